"""Persistence: engine, session factory, tables and repositories."""
