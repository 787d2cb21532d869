"""Shared utilities: logging, transactions, timestamps."""
