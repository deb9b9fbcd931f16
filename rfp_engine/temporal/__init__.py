"""Temporal workflows and activities."""
