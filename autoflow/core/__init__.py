"""Node catalogue and execution core."""
