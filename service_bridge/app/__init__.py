"""Bridge Service application."""
