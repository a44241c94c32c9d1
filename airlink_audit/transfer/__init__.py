"""Transfer session tracking."""
