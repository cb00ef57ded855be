"""Command-line interface for AuthFed."""
