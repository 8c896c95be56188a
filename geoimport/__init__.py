"""Geo event import library: models and algorithms behind the import pipeline."""

__version__ = "0.1.0"
