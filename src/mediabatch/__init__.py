"""mediabatch - batch media downloading and conversion."""

__version__ = "0.1.0"
