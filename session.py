"""Session/identity binding.

Turns identity-provider auth-state events into a locally materialized
UserSession and owns its identity fields.

States:
    UNAUTHENTICATED --signed in--> INITIALIZING --wishlist fetched--> AUTHENTICATED
    AUTHENTICATED --signed out--> UNAUTHENTICATED

Initialization never blocks sign-in: a failed wishlist or purchase-history
fetch leaves that collection empty and logs a warning.
"""

import enum
import threading
from typing import Callable, List, Optional

from api_client import StorefrontAPI
from errors import NotAuthenticatedError, StorefrontError, ValidationError
from identity import IdentityClient, IdentityUser
from observability import get_logger
from schemas import Product, PurchaseRecord, UserSession

logger = get_logger("session")


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"


SessionListener = Callable[[SessionState, Optional[UserSession]], None]


class SessionBinding:
    """Bridges identity-provider auth state into a UserSession.

    The binding is the only writer of the session's identity fields; the
    wishlist client and purchase recorder mutate the collections while
    holding ``lock``.

    Example:
        >>> binding = SessionBinding(identity, api)
        >>> binding.start()
        >>> binding.login("ada@example.com", "secret123")
        >>> binding.current_user.wishlist
        []
        >>> binding.close()
    """

    def __init__(self, identity: IdentityClient, api: StorefrontAPI) -> None:
        self.identity = identity
        self.api = api
        self.lock = threading.RLock()
        self._state = SessionState.UNAUTHENTICATED
        self._session: Optional[UserSession] = None
        self._listeners: List[SessionListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_user(self) -> Optional[UserSession]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED and self._session is not None

    def require_session(self) -> UserSession:
        session = self._session
        if session is None or self._state is not SessionState.AUTHENTICATED:
            raise NotAuthenticatedError()
        return session

    # -- lifecycle --

    def start(self) -> None:
        """Subscribe to auth-state changes; picks up an already signed-in user."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.identity.on_auth_state_changed(self._on_auth_state_changed)
        if self.identity.current_user is not None:
            self._on_auth_state_changed(self.identity.current_user)

    def close(self) -> None:
        """Dispose the subscription and tear the session down."""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self._teardown()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self.lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -- credential operations --

    def register(self, email: str, password: str, display_name: str) -> UserSession:
        """Create an account; the sign-in event materializes the session.

        The initializing wishlist fetch also makes the server create the
        user's backing document.
        """
        if not email:
            raise ValidationError("Email is required")
        self.identity.sign_up(email, password, display_name=display_name)
        return self.require_session()

    def login(self, email: str, password: str) -> UserSession:
        if not email or not password:
            raise ValidationError("Email and password are required")
        self.identity.sign_in_with_password(email, password)
        return self.require_session()

    def logout(self) -> None:
        self.identity.sign_out()

    def reset_password(self, email: str) -> None:
        if not email:
            raise ValidationError("Email is required")
        self.identity.send_password_reset_email(email)

    def update_user_data(self, *, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> UserSession:
        """Update the provider profile and mirror it into the session."""
        session = self.require_session()
        self.identity.update_profile(display_name=display_name, photo_url=photo_url)
        with self.lock:
            if self._session is session:
                if display_name is not None:
                    session.display_name = display_name
                if photo_url is not None:
                    session.photo_url = photo_url
        return session

    # -- transitions --

    def _on_auth_state_changed(self, user: Optional[IdentityUser]) -> None:
        if user is None:
            self._teardown()
            return
        try:
            self._initialize(user)
        except Exception:
            # Sign-in must complete even if materialization breaks.
            logger.exception("session_initialize_failed", uid=user.uid)
            with self.lock:
                if not self._still_signed_in(user):
                    return
                self._session = self._session_from(user, [], [])
                self._set_state(SessionState.AUTHENTICATED)

    def _initialize(self, user: IdentityUser) -> None:
        with self.lock:
            self._session = None
            self._set_state(SessionState.INITIALIZING)

        wishlist = self._fetch_wishlist(user.uid)
        history = self._fetch_purchase_history(user.uid)

        with self.lock:
            if not self._still_signed_in(user):
                # Signed out (or switched user) while fetching.
                return
            self._session = self._session_from(user, wishlist, history)
            self._set_state(SessionState.AUTHENTICATED)
        logger.info("session_authenticated", uid=user.uid, wishlist=len(wishlist), purchases=len(history))

    def _still_signed_in(self, user: IdentityUser) -> bool:
        current = self.identity.current_user
        return current is not None and current.uid == user.uid

    def _fetch_wishlist(self, uid: str) -> List[Product]:
        try:
            return self.api.get_wishlist()
        except StorefrontError as exc:
            logger.warning("wishlist_fetch_failed", uid=uid, error=str(exc))
            return []

    def _fetch_purchase_history(self, uid: str) -> List[PurchaseRecord]:
        try:
            return self.api.get_purchase_history()
        except StorefrontError as exc:
            logger.warning("purchase_history_fetch_failed", uid=uid, error=str(exc))
            return []

    def _teardown(self) -> None:
        with self.lock:
            had_session = self._session is not None
            self._session = None
            if self._state is not SessionState.UNAUTHENTICATED:
                self._set_state(SessionState.UNAUTHENTICATED)
        if had_session:
            logger.info("session_closed")

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state, self._session)

    @staticmethod
    def _session_from(user: IdentityUser, wishlist: List[Product], history: List[PurchaseRecord]) -> UserSession:
        return UserSession(
            uid=user.uid,
            email=user.email,
            display_name=user.display_name,
            photo_url=user.photo_url,
            email_verified=user.email_verified,
            wishlist=wishlist,
            purchase_history=history,
        )
