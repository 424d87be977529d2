"""Test-specific configuration for checkout tests"""

import os

# Test configuration dictionary
test_config = {
    # Shared in-memory SQLite; every test gets a fresh schema
    "database_url": "sqlite://",
    "redis_url": os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15"),
    "log_level": "INFO",
    # Start of a 300s session bucket, so offsets below 300 share a bucket
    "clock_start": 1_750_000_200.0,
    "webhook_signature": "t=1,v1=valid-test-signature",
}
