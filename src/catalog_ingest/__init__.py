"""Duplicate-aware ingestion pipeline for studio material catalogs."""

__version__ = "0.1.0"
