"""Content ingestion from connected sources."""
