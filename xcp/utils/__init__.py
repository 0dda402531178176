"""Shared utilities: errors, logging, validation, retries and formatting."""
