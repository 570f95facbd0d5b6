"""Media engine bindings."""
