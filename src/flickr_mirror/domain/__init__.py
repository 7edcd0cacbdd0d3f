"""Domain layer - catalog access, backup engine and metadata."""
