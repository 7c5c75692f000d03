"""photocat HTTP API."""
