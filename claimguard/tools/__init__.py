"""Clients for external platforms."""
