"""Response-level caching on top of the Redis cache client."""
