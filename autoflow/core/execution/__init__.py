"""Node execution: context and dispatcher."""
