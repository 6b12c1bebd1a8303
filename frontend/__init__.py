"""Virtual try-on web UI."""
