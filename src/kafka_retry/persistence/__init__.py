"""Failed record repositories."""
