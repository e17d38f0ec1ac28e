"""Failed record model and backoff arithmetic."""
