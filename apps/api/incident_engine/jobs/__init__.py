"""Recurring background jobs."""
