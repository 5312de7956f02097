"""HTTP API for formrelay."""
