"""Newswire: resilient multi-source news ingestion and catalog."""

__version__ = "0.1.0"
