#!/usr/bin/env python3
"""Rich Habits checkout - event registration and payment API"""

import uvicorn
from fastapi import FastAPI
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from rh_checkout.config import config
from rh_checkout.logging_config import get_logger, setup_logging
from rh_checkout.routers.catalog import router as catalog_router
from rh_checkout.routers.events import router as events_router
from rh_checkout.routers.health import health
from rh_checkout.routers.payments import router as payments_router

# Configure logging (INFO -> stdout, WARNING/ERROR -> stderr)
setup_logging()
logger = get_logger(__name__)


app = FastAPI(
    title="Rich Habits Checkout",
    description="Event registration checkout: pricing, discount codes, payment intents and registration recording",
    version="1.0.0",
    contact={
        "name": "Rich Habits",
        "email": "admin@rich-habits.com",
    },
)

# Trust proxy headers (TLS terminates at the load balancer)
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

# Include routers
app.include_router(health)
app.include_router(events_router)
app.include_router(payments_router)
app.include_router(catalog_router)


if __name__ == "__main__":
    port = config.get("port")
    logger.info(f"Starting Rich Habits checkout on 0.0.0.0:{port}")
    logger.info(f"Session store backend: {config['session_store_backend']}")
    logger.info(f"Health check available at /health")

    try:
        uvicorn.run(
            app, host="0.0.0.0", port=port, log_level=config["log_level"].lower()
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise
