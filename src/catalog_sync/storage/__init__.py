"""SQLite-backed storage for repository records and published index chunks."""
