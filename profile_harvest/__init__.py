"""Search users and fetch profiles through a pooled headless browser."""
