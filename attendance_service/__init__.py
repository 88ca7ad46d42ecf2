"""Registration, payment and attendance service for events."""

__version__ = "0.1.0"
