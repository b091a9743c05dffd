"""Bill document store adapters."""
