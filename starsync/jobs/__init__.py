"""Background sync jobs."""
