"""Scheduled job entrypoints."""
