"""Tradyfi notification subsystem."""
