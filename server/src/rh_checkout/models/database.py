"""Database configuration and shared clients"""

import os

import redis.asyncio as aioredis
from sqlalchemy import create_engine
from sqlmodel import Session

from rh_checkout.config import config

# Database URL from config
DATABASE_URL = config["database_url"]

# Validate DATABASE_URL exists
if not DATABASE_URL:
    raise ValueError(
        "DATABASE_URL environment variable is not set. "
        "Set DATABASE_URL in the deployment dashboard or local .env file."
    )

# Create engine
engine = create_engine(DATABASE_URL, echo=os.getenv("DEBUG", "false").lower() == "true")

# Redis URL from config
REDIS_URL = config["redis_url"]

# Create Redis client (singleton). Connections are opened lazily on first use,
# so deployments on the in-memory session store never touch Redis.
redis_client = aioredis.from_url(
    REDIS_URL,
    decode_responses=True,
    max_connections=20,  # Max connections in pool
    socket_connect_timeout=5,  # Connection timeout in seconds
    socket_keepalive=True,  # Enable TCP keepalive
)


def get_db():
    """Get database session"""
    with Session(engine) as session:
        yield session


def get_redis():
    """Get Redis client"""
    return redis_client
