"""Index document model, storage-safe naming and chunked publication."""
