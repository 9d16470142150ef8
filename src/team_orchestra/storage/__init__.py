"""SQLite persistence for the run journal."""
