"""Core infrastructure: configuration, logging and time sources."""
