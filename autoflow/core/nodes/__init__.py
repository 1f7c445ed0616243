"""Node definitions, registry and loader."""
