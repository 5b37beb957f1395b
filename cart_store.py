"""Local persistent shopping cart.

The cart lives on the device only: it needs no session, survives sign-out
and is never synchronized with the server except through checkout. Every
mutation rewrites the whole entry list to a JSON file before returning.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError as PydanticValidationError

from observability import get_logger
from schemas import CartEntry, Product, ProductId, product_key

logger = get_logger("cart")


class LocalCartStore:
    """Ordered list of cart entries, at most one per product id.

    Operations never raise: a failed write is logged and the in-memory
    cart stays authoritative for the rest of the process.

    Example:
        >>> cart = LocalCartStore(Path("~/.storefront/cart.json").expanduser())
        >>> cart.add_to_cart(product)
        >>> cart.get_total_items()
        1
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._entries: List[CartEntry] = self._load()

    @property
    def entries(self) -> List[CartEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def add_to_cart(self, product: Product) -> None:
        """Add one unit of the product, creating the entry on first add."""
        key = product.key
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.key == key:
                    self._entries[index] = entry.model_copy(update={"quantity": entry.quantity + 1})
                    break
            else:
                self._entries.append(CartEntry.from_product(product))
            self._persist()

    def remove_from_cart(self, product_id: ProductId) -> None:
        key = product_key(product_id)
        with self._lock:
            remaining = [entry for entry in self._entries if entry.key != key]
            if len(remaining) == len(self._entries):
                return
            self._entries = remaining
            self._persist()

    def update_quantity(self, product_id: ProductId, quantity: int) -> None:
        # Non-positive quantities are rejected silently; removal is explicit.
        if quantity <= 0:
            return
        key = product_key(product_id)
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.key == key:
                    self._entries[index] = entry.model_copy(update={"quantity": quantity})
                    self._persist()
                    return

    def clear_cart(self) -> None:
        with self._lock:
            self._entries = []
            self._persist()

    def get_total_items(self) -> int:
        with self._lock:
            return sum(entry.quantity for entry in self._entries)

    def get_total_price(self) -> float:
        with self._lock:
            return round(sum(entry.subtotal for entry in self._entries), 2)

    def is_in_cart(self, product_id: ProductId) -> bool:
        key = product_key(product_id)
        with self._lock:
            return any(entry.key == key for entry in self._entries)

    # -- durable storage --

    def _load(self) -> List[CartEntry]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("cart file must hold a list")
            entries: List[CartEntry] = []
            seen = set()
            for item in raw:
                entry = CartEntry.model_validate(item)
                if entry.key in seen:
                    continue
                seen.add(entry.key)
                entries.append(entry)
        except (OSError, ValueError, PydanticValidationError) as exc:
            logger.warning("cart_load_failed", path=str(self.path), error=str(exc))
            return []
        logger.debug("cart_loaded", path=str(self.path), entries=len(entries))
        return entries

    def _persist(self) -> None:
        payload = [entry.model_dump(by_alias=True, exclude_none=True) for entry in self._entries]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".cart-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle)
                os.replace(tmp_name, self.path)
            except BaseException:
                os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error("cart_persist_failed", path=str(self.path), error=str(exc))
