"""Long-running capture daemon and its services."""
