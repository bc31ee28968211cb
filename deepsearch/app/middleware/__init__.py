"""HTTP middleware for the chat service."""
