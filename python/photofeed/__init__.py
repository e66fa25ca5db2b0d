"""Photofeed: caching and deferred-processing backend for public photo albums."""

__version__ = "0.1.0"
