"""Shared pytest fixtures for storefront tests."""

from pathlib import Path
from typing import Callable, Iterator, List, Optional
from unittest.mock import MagicMock

import pytest

from api_client import StorefrontAPI
from cart_store import LocalCartStore
from identity import IdentityUser
from schemas import Product
from session import SessionBinding
from wishlist import WishlistSyncClient


def make_identity_user(uid: str = "user-1", email: str = "ada@example.com", **kwargs) -> IdentityUser:
    return IdentityUser(
        uid=uid,
        email=email,
        id_token=kwargs.pop("id_token", f"token-{uid}"),
        refresh_token=kwargs.pop("refresh_token", f"refresh-{uid}"),
        expires_at=kwargs.pop("expires_at", 10**12),
        **kwargs,
    )


class FakeIdentity:
    """In-memory stand-in for the identity provider.

    Announces sign-in/sign-out to observers synchronously, like the real
    client does after a successful provider call.
    """

    def __init__(self) -> None:
        self.current_user: Optional[IdentityUser] = None
        self.observers: List[Callable[[Optional[IdentityUser]], None]] = []
        self.unsubscribe_calls = 0
        self.reset_requests: List[str] = []
        self.profile_updates: List[dict] = []

    def on_auth_state_changed(self, observer):
        self.observers.append(observer)

        def unsubscribe() -> None:
            self.unsubscribe_calls += 1
            if observer in self.observers:
                self.observers.remove(observer)

        return unsubscribe

    def sign_in(self, user: IdentityUser) -> IdentityUser:
        self.current_user = user
        for observer in list(self.observers):
            observer(user)
        return user

    def sign_in_with_password(self, email: str, password: str) -> IdentityUser:
        return self.sign_in(make_identity_user(email=email))

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> IdentityUser:
        return self.sign_in(make_identity_user(uid="new-user", email=email, display_name=display_name))

    def sign_out(self) -> None:
        self.current_user = None
        for observer in list(self.observers):
            observer(None)

    def send_password_reset_email(self, email: str) -> None:
        self.reset_requests.append(email)

    def update_profile(self, *, display_name=None, photo_url=None) -> IdentityUser:
        self.profile_updates.append({"display_name": display_name, "photo_url": photo_url})
        return self.current_user

    def get_id_token(self, force_refresh: bool = False) -> str:
        return "token"


@pytest.fixture
def product() -> Product:
    return Product(id=1, name="Running Shoes", price=49.99, image="https://img.example.com/1.png", rating=4)


@pytest.fixture
def other_product() -> Product:
    return Product(
        id="sku-2",
        name="Trail Jacket",
        price=120.0,
        oldPrice=150.0,
        rating=5,
        description="Waterproof shell",
    )


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def api() -> MagicMock:
    mock_api = MagicMock(spec=StorefrontAPI)
    mock_api.get_wishlist.return_value = []
    mock_api.get_purchase_history.return_value = []
    return mock_api


@pytest.fixture
def binding(identity: FakeIdentity, api: MagicMock) -> Iterator[SessionBinding]:
    session_binding = SessionBinding(identity, api)
    session_binding.start()
    yield session_binding
    session_binding.close()


@pytest.fixture
def wishlist_client(binding: SessionBinding, api: MagicMock) -> Iterator[WishlistSyncClient]:
    client = WishlistSyncClient(binding, api, refresh_interval=3600)
    yield client
    client.close()


@pytest.fixture
def cart_path(tmp_path: Path) -> Path:
    return tmp_path / "cart.json"


@pytest.fixture
def cart(cart_path: Path) -> LocalCartStore:
    return LocalCartStore(cart_path)
