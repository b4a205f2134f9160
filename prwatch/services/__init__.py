"""Refresh engine services: fetching, reconciliation, metrics and the dashboard facade."""
