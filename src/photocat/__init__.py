"""photocat: object storage for a photo-driven inventory catalog."""

__version__ = "0.1.0"
