"""Core infrastructure: configuration, security, realtime and runtime wiring."""
