"""Versioned database schema migrations with SQLite and in-memory drivers."""

__version__ = "0.1.0"