"""HTTP API: FastAPI routes and their dependencies."""
