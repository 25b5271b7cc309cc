"""Imaging service: HTTP image transformation pipelines."""

__version__ = "0.1.0"
