"""HTTP API layer: routes, schemas and error handlers."""
