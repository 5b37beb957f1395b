"""Purchase history recording.

Records are append-only. Checkout always completes locally (the cart is
cleared) whether or not the history could be recorded; a guest checkout is
simply not recorded.
"""

import itertools
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from api_client import StorefrontAPI
from cart_store import LocalCartStore
from errors import StorefrontError, ValidationError
from observability import get_logger
from schemas import CartEntry, PurchaseItem, PurchaseRecord
from session import SessionBinding

logger = get_logger("purchases")

_sequence = itertools.count()
_sequence_lock = threading.Lock()


def generate_order_id() -> str:
    """Return ``ORD-<epoch ms>-<sequence>-<random hex>``.

    The per-process sequence keeps ids created within the same millisecond
    distinct; the random suffix keeps separate processes apart.
    """
    with _sequence_lock:
        seq = next(_sequence)
    millis = int(time.time() * 1000)
    return f"ORD-{millis}-{seq:06d}-{secrets.token_hex(3)}"


def items_from_cart(entries: List[CartEntry]) -> List[PurchaseItem]:
    return [
        PurchaseItem(id=entry.id, name=entry.name, price=entry.price, quantity=entry.quantity, image=entry.image)
        for entry in entries
    ]


def total_of(items: List[PurchaseItem]) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


class CheckoutResult(BaseModel):
    order_id: Optional[str] = None
    total_amount: float
    recorded: bool
    error: Optional[str] = None


class PurchaseHistoryRecorder:
    """Appends purchase records to the signed-in user's remote history."""

    def __init__(self, binding: SessionBinding, api: StorefrontAPI, cart: LocalCartStore) -> None:
        self.binding = binding
        self.api = api
        self.cart = cart

    def add_to_purchase_history(
        self,
        items: List[PurchaseItem],
        total_amount: Optional[float] = None,
    ) -> PurchaseRecord:
        """Record a purchase for the signed-in user.

        Raises:
            NotAuthenticatedError: No session.
            ValidationError: ``items`` is empty or rejected by the server.
            TransientIOError: The server could not be reached.
        """
        session = self.binding.require_session()
        if not items:
            raise ValidationError("Invalid purchase data")

        record = PurchaseRecord(
            order_id=generate_order_id(),
            items=items,
            total_amount=total_amount if total_amount is not None else total_of(items),
            date=datetime.now(timezone.utc),
        )
        order_id = self.api.add_purchase(
            record.items,
            order_id=record.order_id,
            total_amount=record.total_amount,
            date=record.date.isoformat(),
        )
        if order_id != record.order_id:
            record = record.model_copy(update={"order_id": order_id})

        with self.binding.lock:
            if self.binding.current_user is session and all(
                existing.order_id != record.order_id for existing in session.purchase_history
            ):
                session.purchase_history = [*session.purchase_history, record]
        logger.info("purchase_recorded", uid=session.uid, order_id=record.order_id, total=record.total_amount)
        return record

    def checkout(self) -> CheckoutResult:
        """Complete checkout of the local cart.

        The cart is cleared in every case; the returned result tells the
        caller whether the purchase made it into the history (a guest gets
        ``recorded=False`` and should be nudged to sign in).
        """
        entries = self.cart.entries
        if not entries:
            raise ValidationError("Cart is empty")
        items = items_from_cart(entries)
        total = total_of(items)

        if not self.binding.is_authenticated:
            logger.info("purchase_history_skipped", reason="not_authenticated", total=total)
            self.cart.clear_cart()
            return CheckoutResult(total_amount=total, recorded=False)

        try:
            record = self.add_to_purchase_history(items, total)
        except StorefrontError as exc:
            logger.warning("purchase_history_record_failed", error=str(exc), total=total)
            return CheckoutResult(total_amount=total, recorded=False, error=str(exc))
        finally:
            self.cart.clear_cart()
        return CheckoutResult(order_id=record.order_id, total_amount=total, recorded=True)

    def get_purchase_history(self) -> List[PurchaseRecord]:
        self.binding.require_session()
        return self.api.get_purchase_history()

    def get_purchase(self, order_id: str) -> PurchaseRecord:
        self.binding.require_session()
        if not order_id:
            raise ValidationError("Order ID is required")
        return self.api.get_purchase(order_id)
