"""Artwork import engine: durable, rate-limited catalog import jobs."""

__version__ = "0.1.0"
