"""DeepSearch chat service application."""
