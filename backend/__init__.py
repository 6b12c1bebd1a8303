"""Virtual try-on backend: Gemini proxy service and generation client."""
