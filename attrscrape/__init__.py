"""Configuration-driven metric extraction from remote manageable endpoints."""

__version__ = "0.1.0"
