"""HTTP API — FastAPI application, dependencies and versioned routers."""
