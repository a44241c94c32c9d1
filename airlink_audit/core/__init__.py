"""Core models, errors and shared primitives."""
