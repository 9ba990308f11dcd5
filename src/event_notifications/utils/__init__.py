"""Shared utilities: structured logging and secret sanitization."""
