"""Core utilities: timezone normalization, configuration and the error taxonomy."""
