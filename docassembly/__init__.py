"""Template-driven conversational document assembly."""

__version__ = "0.1.0"
