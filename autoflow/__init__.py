"""
Autoflow Engine

Credential custody, credential resolution and node dispatch for
workflow automation.
"""

__version__ = "1.0.0"
