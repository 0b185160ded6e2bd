"""Domain engines, configuration, errors, caching and storage."""
