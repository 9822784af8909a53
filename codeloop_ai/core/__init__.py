"""Ambient infrastructure: settings, logging and monitoring."""
