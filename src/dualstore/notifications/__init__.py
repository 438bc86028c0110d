"""Reminder planning and push delivery."""
