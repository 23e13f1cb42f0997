"""Utility helpers shared across Thimble."""
