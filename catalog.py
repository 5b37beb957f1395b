"""Read-only catalog queries."""

from typing import List, Optional

from api_client import StorefrontAPI
from errors import NotFoundError
from schemas import Product, ProductId


class CatalogService:
    def __init__(self, api: StorefrontAPI) -> None:
        self.api = api

    def get_all_products(self) -> List[Product]:
        return self.api.list_products()

    def get_product_by_id(self, product_id: ProductId) -> Optional[Product]:
        try:
            return self.api.get_product(product_id)
        except NotFoundError:
            return None

    def get_discounted_products(self) -> List[Product]:
        return [product for product in self.api.list_discounted_products() if product.on_sale]
