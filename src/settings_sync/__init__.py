"""Sync environment and configuration files across machines."""

__version__ = "0.1.0"
