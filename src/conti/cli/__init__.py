"""Command-line interface for conti."""
