"""Engine services: rate limiting, retry, cache consistency and fan-out."""
