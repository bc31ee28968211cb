"""Database package: models, async sessions and CRUD operations."""
