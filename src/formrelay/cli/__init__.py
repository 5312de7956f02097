"""Command-line interface for formrelay."""
