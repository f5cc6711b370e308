"""Command line interface for Cardwise."""
