"""FastAPI application for the gateway."""
