"""Schemas for credentials and node execution."""
