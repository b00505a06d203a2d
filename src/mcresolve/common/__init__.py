"""Shared helpers used across registry clients and the resolver."""
