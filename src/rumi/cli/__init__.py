"""Command-line interface for rumi."""
