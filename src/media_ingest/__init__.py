"""Media ingestion for the gallery: variants, object storage and rollback."""
