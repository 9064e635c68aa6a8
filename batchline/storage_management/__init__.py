"""Durable on-disk batch queue."""
