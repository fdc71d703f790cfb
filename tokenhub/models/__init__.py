"""Domain and wire models."""
