"""Builtin node declarations, grouped by category."""
