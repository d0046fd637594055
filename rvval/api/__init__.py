"""HTTP boundary for the resolution engine."""
