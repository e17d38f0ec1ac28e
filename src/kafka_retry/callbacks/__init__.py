"""Ready-made retry callbacks."""
