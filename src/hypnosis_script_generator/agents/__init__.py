"""AG2 agent factories."""
