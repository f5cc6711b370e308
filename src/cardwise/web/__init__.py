"""JSON API for Cardwise."""
