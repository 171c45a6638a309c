"""Utility package: configuration, constants and datetime helpers."""
