"""Control loop modules."""
