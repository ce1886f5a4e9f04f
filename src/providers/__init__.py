"""Provider adapters for external systems."""
