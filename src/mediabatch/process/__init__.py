"""Subprocess execution.

This module runs the external tools mediabatch drives, draining their output
as it is produced and letting another task terminate the process in flight.
"""
