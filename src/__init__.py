"""Herald notification delivery service."""
