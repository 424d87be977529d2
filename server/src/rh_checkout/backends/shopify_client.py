"""Read-only Shopify catalog client used by the shop pages"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ShopifyError(RuntimeError):
    """Catalog request failed or the store is not configured"""


class ShopifyClient:
    def __init__(
        self,
        config: dict,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.store_domain = config.get("shopify_store_domain")
        self.access_token = config.get("shopify_access_token")
        self.api_version = config.get("shopify_api_version") or "2023-10"
        self.transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    def _base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict:
        if not self.configured:
            raise ShopifyError("Shopify store is not configured")

        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url(),
                headers=headers,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Shopify API error on {path}: {e.response.status_code} - {e.response.text}"
            )
            raise ShopifyError(f"Shopify request failed: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Shopify request to {path} failed: {e}")
            raise ShopifyError(f"Shopify request failed: {e}") from e

    async def list_collections(self) -> List[Dict]:
        """Custom and smart collections, merged"""
        custom = await self._get("/custom_collections.json")
        smart = await self._get("/smart_collections.json")
        return custom.get("custom_collections", []) + smart.get("smart_collections", [])

    async def get_product_by_handle(self, handle: str) -> Optional[Dict]:
        data = await self._get("/products.json", params={"handle": handle})
        products = data.get("products", [])
        return products[0] if products else None

    async def get_collection_by_handle(self, handle: str) -> Optional[Dict]:
        for kind in ("custom_collections", "smart_collections"):
            data = await self._get(f"/{kind}.json", params={"handle": handle})
            collections = data.get(kind, [])
            if collections:
                return collections[0]
        return None

    async def get_collection_products(self, handle: str) -> Optional[List[Dict]]:
        """Products in a collection, or None if no collection has this handle"""
        collection = await self.get_collection_by_handle(handle)
        if collection is None:
            return None
        data = await self._get(f"/collections/{collection['id']}/products.json")
        return data.get("products", [])
