"""Business-event action dispatch engine."""

__version__ = "1.0.0"
