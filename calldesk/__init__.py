"""calldesk - call session control for a browser softphone."""

__version__ = "0.1.0"
