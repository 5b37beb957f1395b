"""Remote wishlist synchronization.

The cached wishlist on the UserSession is changed only after the server
confirms a mutation (confirm-then-merge). Merges re-check membership, so
duplicate or out-of-order confirmations are harmless. A background timer
replaces the cache with the server copy while a session is authenticated.
"""

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from api_client import StorefrontAPI
from errors import RemoteRequestError, StorefrontError, ValidationError, WishlistOperationError
from observability import get_logger
from schemas import Product, ProductId, UserSession, product_key
from session import SessionBinding, SessionState

logger = get_logger("wishlist")

DEFAULT_REFRESH_INTERVAL_SECONDS = 300.0
CLOSE_JOIN_TIMEOUT_SECONDS = 5.0


class RefreshTimer:
    """Re-arming timer that calls ``callback`` every ``interval`` seconds.

    ``stop()`` cancels the pending tick immediately; a tick already running
    when ``stop()`` is called does not re-arm.
    """

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "wishlist-refresh") -> None:
        self.interval = interval
        self._callback = callback
        self._name = name
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._timer is not None

    def start(self) -> None:
        with self._lock:
            if self._timer is not None:
                return
            self._generation += 1
            self._schedule(self._generation)

    def stop(self, join_timeout: Optional[float] = None) -> None:
        """Cancel the pending tick.

        With ``join_timeout``, also wait for a tick that is already running.
        Never pass it from inside the callback or while holding a lock the
        callback takes.
        """
        with self._lock:
            self._generation += 1
            timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        if join_timeout is not None and timer is not threading.current_thread():
            timer.join(join_timeout)

    def _schedule(self, generation: int) -> None:
        timer = threading.Timer(self.interval, self._tick, args=(generation,))
        timer.name = self._name
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
        try:
            self._callback()
        finally:
            with self._lock:
                if generation == self._generation:
                    self._schedule(generation)


class WishlistSyncClient:
    """Keeps ``UserSession.wishlist`` consistent with the server copy.

    Example:
        >>> wishlist = WishlistSyncClient(binding, api)
        >>> wishlist.add_to_wishlist(product)
        >>> wishlist.is_in_wishlist(product.id)
        True
    """

    def __init__(
        self,
        binding: SessionBinding,
        api: StorefrontAPI,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ) -> None:
        self.binding = binding
        self.api = api
        self.timer = RefreshTimer(refresh_interval, self._refresh_in_background)
        self._unsubscribe = binding.subscribe(self._on_session_state)
        if binding.is_authenticated:
            self.timer.start()

    @property
    def wishlist(self) -> List[Product]:
        session = self.binding.current_user
        if session is None:
            return []
        with self.binding.lock:
            return list(session.wishlist)

    def is_in_wishlist(self, product_id: ProductId) -> bool:
        """Local membership check; never touches the network."""
        session = self.binding.current_user
        if session is None:
            return False
        key = product_key(product_id)
        with self.binding.lock:
            return any(item.key == key for item in session.wishlist)

    def add_to_wishlist(self, product: Product) -> str:
        """Add a product once the server confirms it; returns the server message."""
        session = self.binding.require_session()
        if product.key == "":
            raise ValidationError("Invalid product data")
        if self.is_in_wishlist(product.id):
            return "Product already in wishlist"

        with self._mutation(session):
            body = self._call(lambda: self.api.add_to_wishlist(product), "Failed to add to wishlist")
            with self.binding.lock:
                if self.binding.current_user is session and not any(
                    item.key == product.key for item in session.wishlist
                ):
                    session.wishlist = [*session.wishlist, product]
        logger.info("wishlist_item_added", uid=session.uid, product_id=product.key)
        return str(body.get("message") or "Product added to wishlist")

    def remove_from_wishlist(self, product_id: ProductId) -> str:
        """Remove a product once the server confirms it; returns the server message."""
        session = self.binding.require_session()
        key = product_key(product_id)
        if key == "":
            raise ValidationError("Product ID is required")

        with self._mutation(session):
            body = self._call(lambda: self.api.remove_from_wishlist(product_id), "Failed to remove from wishlist")
            with self.binding.lock:
                if self.binding.current_user is session:
                    session.wishlist = [item for item in session.wishlist if item.key != key]
        logger.info("wishlist_item_removed", uid=session.uid, product_id=key)
        return str(body.get("message") or "Product removed from wishlist")

    def refresh_wishlist(self) -> List[Product]:
        """Replace the cached wishlist with the server copy (server wins)."""
        session = self.binding.require_session()
        wishlist = self.api.get_wishlist()
        with self.binding.lock:
            if self.binding.current_user is session:
                session.wishlist = wishlist
        logger.debug("wishlist_refreshed", uid=session.uid, count=len(wishlist))
        return list(wishlist)

    def close(self) -> None:
        self._unsubscribe()
        self.timer.stop(join_timeout=CLOSE_JOIN_TIMEOUT_SECONDS)

    # -- internals --

    def _refresh_in_background(self) -> None:
        if not self.binding.is_authenticated:
            return
        try:
            self.refresh_wishlist()
        except StorefrontError as exc:
            logger.warning("wishlist_refresh_failed", error=str(exc))
        except Exception:
            # Nothing may escape the timer thread
            logger.exception("wishlist_refresh_failed")

    def _on_session_state(self, state: SessionState, session: Optional[UserSession]) -> None:
        if state is SessionState.AUTHENTICATED:
            self.timer.start()
        else:
            self.timer.stop()

    def _call(self, request: Callable[[], dict], failure_message: str) -> dict:
        try:
            return request()
        except (ValidationError, RemoteRequestError) as exc:
            raise WishlistOperationError(exc.message or failure_message, status_code=exc.status_code) from exc

    @contextmanager
    def _mutation(self, session: UserSession) -> Iterator[None]:
        """Flag the session as loading while a mutation is in flight."""
        with self.binding.lock:
            session.wishlist_loading = True
        try:
            yield
        finally:
            with self.binding.lock:
                session.wishlist_loading = False
