"""SQLite persistence for task records."""
