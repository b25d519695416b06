"""APScheduler job handlers and registration."""
