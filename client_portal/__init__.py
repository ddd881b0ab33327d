"""Archject client portal access core."""

__version__ = "1.0.0"
