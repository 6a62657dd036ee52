"""Locating the external tools mediabatch drives."""
