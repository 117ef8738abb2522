"""Utility helpers shared across the core."""
