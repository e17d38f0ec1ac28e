"""Live failure ingestion."""
