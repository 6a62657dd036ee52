"""Download and conversion services.

Each service turns user input into batch items and a command builder for one
external tool, then hands them to the batch orchestrator. This separation
keeps tool-specific argument tables out of the orchestration code.
"""
