"""Read-only shop catalog endpoints backed by Shopify"""

import logging
import threading

from fastapi import APIRouter, Depends, HTTPException

from rh_checkout.backends.shopify_client import ShopifyClient, ShopifyError
from rh_checkout.config import config

router = APIRouter(prefix="/shop")

logger = logging.getLogger(__name__)

_shopify_lock = threading.Lock()
_shopify_client = None


def get_shopify_client() -> ShopifyClient:
    """Get the singleton Shopify client instance"""
    global _shopify_client
    if _shopify_client is None:
        with _shopify_lock:
            if _shopify_client is None:
                _shopify_client = ShopifyClient(config)
                logger.info("Initialized singleton Shopify client")

    return _shopify_client


def _unavailable(error: ShopifyError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"Catalog unavailable: {error}")


@router.get("/collections")
async def list_collections(client: ShopifyClient = Depends(get_shopify_client)):
    try:
        return {"collections": await client.list_collections()}
    except ShopifyError as e:
        raise _unavailable(e)


@router.get("/products/{handle}")
async def get_product(handle: str, client: ShopifyClient = Depends(get_shopify_client)):
    try:
        product = await client.get_product_by_handle(handle)
    except ShopifyError as e:
        raise _unavailable(e)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": product}


@router.get("/collections/{handle}/products")
async def get_collection_products(
    handle: str, client: ShopifyClient = Depends(get_shopify_client)
):
    try:
        products = await client.get_collection_products(handle)
    except ShopifyError as e:
        raise _unavailable(e)
    if products is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    return {"products": products}
