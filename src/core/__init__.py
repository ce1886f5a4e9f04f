"""Core domain: entities, interfaces, resilience and delivery use cases."""
