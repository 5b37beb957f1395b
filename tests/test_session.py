"""Unit tests for the session/identity binding."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeIdentity, make_identity_user
from errors import AuthError, NotAuthenticatedError, RemoteRequestError, TransientIOError, ValidationError
from schemas import Product, PurchaseItem, PurchaseRecord
from session import SessionBinding, SessionState


class TestSessionTransitions:
    """Tests for auth-state driven transitions."""

    def test_starts_unauthenticated(self, binding: SessionBinding) -> None:
        assert binding.state is SessionState.UNAUTHENTICATED
        assert binding.current_user is None
        assert not binding.is_authenticated

    def test_sign_in_materializes_session(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock, product: Product
    ) -> None:
        api.get_wishlist.return_value = [product]
        record = PurchaseRecord(
            orderId="ORD-1",
            items=[PurchaseItem(id=1, name="Running Shoes", price=49.99)],
            totalAmount=49.99,
        )
        api.get_purchase_history.return_value = [record]

        identity.sign_in(make_identity_user(display_name="Ada", email_verified=True))

        session = binding.current_user
        assert binding.state is SessionState.AUTHENTICATED
        assert session is not None
        assert session.uid == "user-1"
        assert session.display_name == "Ada"
        assert session.email_verified is True
        assert session.wishlist == [product]
        assert session.purchase_history == [record]

    def test_wishlist_fetch_failure_degrades_to_empty(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock
    ) -> None:
        api.get_wishlist.side_effect = TransientIOError("network down")

        identity.sign_in(make_identity_user())

        assert binding.state is SessionState.AUTHENTICATED
        assert binding.current_user is not None
        assert binding.current_user.wishlist == []

    def test_unexpected_failure_still_completes_sign_in(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock
    ) -> None:
        api.get_wishlist.side_effect = KeyError("wishlist")

        identity.sign_in(make_identity_user())

        assert binding.is_authenticated
        assert binding.current_user.wishlist == []

    def test_malformed_wishlist_keeps_history(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock
    ) -> None:
        record = PurchaseRecord(orderId="ORD-1", items=[PurchaseItem(id=1, name="A", price=1.0)], totalAmount=1.0)
        api.get_wishlist.side_effect = RemoteRequestError("Malformed response from GET /api/wishlist", status_code=200)
        api.get_purchase_history.return_value = [record]

        identity.sign_in(make_identity_user())

        assert binding.current_user.wishlist == []
        assert binding.current_user.purchase_history == [record]

    def test_sign_out_during_failed_initialization_stays_signed_out(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock
    ) -> None:
        def sign_out_then_fail():
            identity.sign_out()
            raise KeyError("wishlist")

        api.get_wishlist.side_effect = sign_out_then_fail

        identity.sign_in(make_identity_user())

        assert binding.state is SessionState.UNAUTHENTICATED
        assert binding.current_user is None

    def test_history_fetch_failure_keeps_wishlist(
        self, binding: SessionBinding, identity: FakeIdentity, api: MagicMock, product: Product
    ) -> None:
        api.get_wishlist.return_value = [product]
        api.get_purchase_history.side_effect = TransientIOError()

        identity.sign_in(make_identity_user())

        assert binding.current_user.wishlist == [product]
        assert binding.current_user.purchase_history == []

    def test_sign_out_discards_session(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        identity.sign_in(make_identity_user())

        identity.sign_out()

        assert binding.state is SessionState.UNAUTHENTICATED
        assert binding.current_user is None
        with pytest.raises(NotAuthenticatedError):
            binding.require_session()

    def test_listeners_see_every_transition(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        seen = []
        binding.subscribe(lambda state, session: seen.append(state))

        identity.sign_in(make_identity_user())
        identity.sign_out()

        assert seen == [SessionState.INITIALIZING, SessionState.AUTHENTICATED, SessionState.UNAUTHENTICATED]

    def test_start_picks_up_signed_in_user(self, identity: FakeIdentity, api: MagicMock) -> None:
        identity.current_user = make_identity_user()
        binding = SessionBinding(identity, api)

        binding.start()

        assert binding.is_authenticated
        binding.close()

    def test_close_unsubscribes_once(self, identity: FakeIdentity, api: MagicMock) -> None:
        binding = SessionBinding(identity, api)
        binding.start()
        identity.sign_in(make_identity_user())

        binding.close()
        binding.close()

        assert identity.unsubscribe_calls == 1
        assert identity.observers == []
        assert binding.current_user is None

    def test_session_not_reused_across_users(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        identity.sign_in(make_identity_user(uid="first"))
        first = binding.current_user

        identity.sign_in(make_identity_user(uid="second", email="grace@example.com"))

        assert binding.current_user is not first
        assert binding.current_user.uid == "second"


class TestCredentialOperations:
    """Tests for register/login/logout/reset/update."""

    def test_login_returns_session(self, binding: SessionBinding) -> None:
        session = binding.login("ada@example.com", "secret123")

        assert session.email == "ada@example.com"
        assert binding.is_authenticated

    def test_login_requires_credentials(self, binding: SessionBinding) -> None:
        with pytest.raises(ValidationError):
            binding.login("", "secret123")

    def test_login_failure_propagates(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        identity.sign_in_with_password = MagicMock(side_effect=AuthError("Invalid email or password"))

        with pytest.raises(AuthError):
            binding.login("ada@example.com", "wrong")
        assert binding.current_user is None

    def test_register_fetches_wishlist(self, binding: SessionBinding, api: MagicMock) -> None:
        session = binding.register("new@example.com", "secret123", "Newcomer")

        assert session.display_name == "Newcomer"
        api.get_wishlist.assert_called_once()

    def test_logout(self, binding: SessionBinding) -> None:
        binding.login("ada@example.com", "secret123")

        binding.logout()

        assert binding.current_user is None

    def test_reset_password_delegates(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        binding.reset_password("ada@example.com")

        assert identity.reset_requests == ["ada@example.com"]

    def test_update_user_data_mirrors_profile(self, binding: SessionBinding, identity: FakeIdentity) -> None:
        binding.login("ada@example.com", "secret123")

        session = binding.update_user_data(display_name="Ada L.")

        assert session.display_name == "Ada L."
        assert identity.profile_updates == [{"display_name": "Ada L.", "photo_url": None}]

    def test_update_user_data_requires_session(self, binding: SessionBinding) -> None:
        with pytest.raises(NotAuthenticatedError):
            binding.update_user_data(display_name="Nobody")
