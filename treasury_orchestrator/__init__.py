"""Treasury composition root, HTTP API and CLI."""
