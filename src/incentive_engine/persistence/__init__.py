"""Persistence adapters: in-memory and SQLAlchemy units of work."""
