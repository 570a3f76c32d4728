"""Processing record persistence."""
