"""HTTP layer: authentication dependencies and route modules."""
