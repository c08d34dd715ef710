"""Batch face cropping with a cascade classifier."""

__version__ = "0.1.0"
