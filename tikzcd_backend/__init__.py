"""FastAPI hosting shell for the tikzcd session controller."""
