"""Sidecar snapshot manager."""
