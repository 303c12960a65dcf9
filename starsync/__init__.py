"""Star-history ingestion service."""
