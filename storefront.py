"""Composition root for the client-side services.

Builds every service explicitly from settings and owns their lifecycle:
``start()`` binds to the identity provider, ``close()`` cancels the refresh
timer, disposes the auth subscription and closes the HTTP connections.
"""

from typing import Optional

import httpx

from api_client import StorefrontAPI
from cart_store import LocalCartStore
from catalog import CatalogService
from identity import IdentityClient
from observability import get_logger
from purchase_history import PurchaseHistoryRecorder
from session import SessionBinding
from settings import StorefrontSettings
from wishlist import WishlistSyncClient

logger = get_logger()


class Storefront:
    """All client services wired together.

    Example:
        >>> with Storefront(StorefrontSettings()) as shop:
        ...     shop.session.login("ada@example.com", "secret123")
        ...     shop.wishlist.add_to_wishlist(product)
        ...     shop.cart.add_to_cart(product)
        ...     shop.purchases.checkout()
    """

    def __init__(
        self,
        settings: StorefrontSettings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._http = httpx.Client(timeout=settings.request_timeout_seconds, transport=transport)
        api_key = settings.identity_api_key.get_secret_value() if settings.identity_api_key else ""
        self.identity = IdentityClient(
            api_key,
            http_client=self._http,
            base_url=settings.identity_base_url,
            token_url=settings.token_base_url,
        )
        self.api = StorefrontAPI(
            settings.api_base_url,
            http_client=self._http,
            token_provider=self.identity.get_id_token,
            max_attempts=settings.retry_max_attempts,
            initial_wait_seconds=settings.retry_initial_wait_seconds,
            max_wait_seconds=settings.retry_max_wait_seconds,
        )
        self.cart = LocalCartStore(settings.cart_path)
        self.catalog = CatalogService(self.api)
        self.session = SessionBinding(self.identity, self.api)
        self.wishlist = WishlistSyncClient(
            self.session,
            self.api,
            refresh_interval=settings.wishlist_refresh_interval_seconds,
        )
        self.purchases = PurchaseHistoryRecorder(self.session, self.api, self.cart)
        self._closed = False

    def start(self) -> "Storefront":
        self.session.start()
        logger.info("storefront_started", api=self.settings.api_base_url)
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.wishlist.close()
        self.session.close()
        self._http.close()
        logger.info("storefront_closed")

    def __enter__(self) -> "Storefront":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
