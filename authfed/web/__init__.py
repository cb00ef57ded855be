"""Web layer: Flask routes and session handoff."""
