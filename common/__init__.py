"""Shared logging and auth helpers."""
