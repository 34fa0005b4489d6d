"""Maintenance-vehicle support assistant: knowledge retrieval for answer generation."""

__version__ = "0.1.0"
