"""Compass scheduling and time tracking core."""
