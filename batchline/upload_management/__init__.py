"""Batch delivery over HTTP."""
