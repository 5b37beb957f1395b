"""Identity provider client.

Talks to the hosted identity provider over its REST account API:
- credential operations (sign up, sign in, password reset, profile update)
- bearer token lifecycle (id token + refresh token)
- auth-state subscription: observers are told about every sign-in/sign-out
- server-side token verification (token -> uid + claims)

The provider is the source of truth for credentials and for the profile
projection (display name, photo). Nothing here touches the document store.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from errors import AuthError, NotAuthenticatedError, TransientIOError
from observability import get_logger

logger = get_logger("identity")

MIN_PASSWORD_LENGTH = 6
# Refresh the id token when it expires within this many seconds
TOKEN_REFRESH_MARGIN_SECONDS = 60

AUTH_ERROR_MESSAGES = {
    "EMAIL_EXISTS": "The email address is already in use",
    "WEAK_PASSWORD": "Password should be at least 6 characters",
    "INVALID_EMAIL": "The email address is badly formatted",
    "EMAIL_NOT_FOUND": "There is no user with this email",
    "INVALID_PASSWORD": "The password is invalid",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
    "USER_DISABLED": "The user account has been disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, try again later",
    "INVALID_ID_TOKEN": "The session has expired, sign in again",
    "TOKEN_EXPIRED": "The session has expired, sign in again",
    "USER_NOT_FOUND": "The user no longer exists",
}


class IdentityUser(BaseModel):
    """Signed-in principal as reported by the identity provider."""

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email_verified: bool = False
    id_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)
    expires_at: float = 0.0


class TokenClaims(BaseModel):
    """Claims of a verified bearer token."""

    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_verified: bool = False


AuthStateObserver = Callable[[Optional[IdentityUser]], None]


def _error_code(response: httpx.Response) -> str:
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP_{response.status_code}"
    # e.g. "WEAK_PASSWORD : Password should be at least 6 characters"
    return str(message).split(" : ")[0].strip()


class IdentityClient:
    """REST client for the identity provider.

    Example:
        >>> identity = IdentityClient(api_key="key", http_client=httpx.Client())
        >>> unsubscribe = identity.on_auth_state_changed(print)
        >>> identity.sign_in_with_password("ada@example.com", "secret123")
        >>> identity.get_id_token()
    """

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.Client,
        base_url: str = "https://identitytoolkit.googleapis.com/v1",
        token_url: str = "https://securetoken.googleapis.com/v1",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._token_url = token_url.rstrip("/")
        self._clock = clock
        self._user: Optional[IdentityUser] = None
        self._observers: List[AuthStateObserver] = []
        self._lock = threading.RLock()

    @property
    def current_user(self) -> Optional[IdentityUser]:
        return self._user

    # -- auth-state subscription --

    def on_auth_state_changed(self, observer: AuthStateObserver) -> Callable[[], None]:
        """Register an observer; returns an idempotent unsubscribe handle."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _notify(self, user: Optional[IdentityUser]) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            observer(user)

    # -- credential operations --

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> IdentityUser:
        """Create credentials, set the display name, then announce the sign-in."""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(AUTH_ERROR_MESSAGES["WEAK_PASSWORD"], code="WEAK_PASSWORD")
        payload = self._call(
            "accounts:signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._user_from_token_payload(payload)
        if display_name:
            payload = self._call(
                "accounts:update",
                {"idToken": user.id_token, "displayName": display_name, "returnSecureToken": True},
            )
            user = self._user_from_token_payload(payload, previous=user)
            user.display_name = display_name
        logger.info("identity_signed_up", uid=user.uid)
        self._set_user(user)
        return user

    def sign_in_with_password(self, email: str, password: str) -> IdentityUser:
        payload = self._call(
            "accounts:signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._user_from_token_payload(payload)
        user = self._with_profile(user)
        logger.info("identity_signed_in", uid=user.uid)
        self._set_user(user)
        return user

    def sign_out(self) -> None:
        with self._lock:
            user, self._user = self._user, None
        if user is not None:
            logger.info("identity_signed_out", uid=user.uid)
        self._notify(None)

    def send_password_reset_email(self, email: str) -> None:
        self._call("accounts:sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})
        logger.info("password_reset_requested")

    def update_profile(self, *, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> IdentityUser:
        """Update the provider's profile projection of the signed-in user."""
        token = self.get_id_token()
        body: Dict[str, Any] = {"idToken": token, "returnSecureToken": True}
        if display_name is not None:
            body["displayName"] = display_name
        if photo_url is not None:
            body["photoUrl"] = photo_url
        payload = self._call("accounts:update", body)
        with self._lock:
            current = self._user
            if current is None:
                raise NotAuthenticatedError()
            updated = self._user_from_token_payload(payload, previous=current)
            if display_name is not None:
                updated.display_name = display_name
            if photo_url is not None:
                updated.photo_url = photo_url
            self._user = updated
        return updated

    # -- tokens --

    def get_id_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token for the signed-in user, refreshing it if near expiry."""
        with self._lock:
            user = self._user
            if user is None:
                raise NotAuthenticatedError()
            if not force_refresh and user.expires_at - self._clock() > TOKEN_REFRESH_MARGIN_SECONDS:
                return user.id_token
            refresh_token = user.refresh_token

        payload = self._post(
            f"{self._token_url}/token",
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        with self._lock:
            if self._user is None or self._user.uid != user.uid:
                raise NotAuthenticatedError()
            self._user = self._user.model_copy(
                update={
                    "id_token": payload["id_token"],
                    "refresh_token": payload.get("refresh_token", refresh_token),
                    "expires_at": self._clock() + float(payload.get("expires_in", 3600)),
                }
            )
            logger.debug("identity_token_refreshed", uid=user.uid)
            return self._user.id_token

    def verify_id_token(self, token: str) -> TokenClaims:
        """Resolve an opaque bearer token to its principal, or raise AuthError."""
        payload = self._call("accounts:lookup", {"idToken": token})
        users = payload.get("users") or []
        if not users:
            raise AuthError(AUTH_ERROR_MESSAGES["USER_NOT_FOUND"], code="USER_NOT_FOUND")
        info = users[0]
        return TokenClaims(
            uid=info["localId"],
            email=info.get("email"),
            name=info.get("displayName"),
            email_verified=bool(info.get("emailVerified", False)),
        )

    # -- internals --

    def _set_user(self, user: IdentityUser) -> None:
        with self._lock:
            self._user = user
        self._notify(user)

    def _with_profile(self, user: IdentityUser) -> IdentityUser:
        payload = self._call("accounts:lookup", {"idToken": user.id_token})
        users = payload.get("users") or []
        if not users:
            return user
        info = users[0]
        return user.model_copy(
            update={
                "display_name": info.get("displayName", user.display_name),
                "photo_url": info.get("photoUrl", user.photo_url),
                "email_verified": bool(info.get("emailVerified", False)),
            }
        )

    def _user_from_token_payload(
        self, payload: Dict[str, Any], previous: Optional[IdentityUser] = None
    ) -> IdentityUser:
        return IdentityUser(
            uid=payload.get("localId") or (previous.uid if previous else ""),
            email=payload.get("email") or (previous.email if previous else None),
            display_name=payload.get("displayName") or (previous.display_name if previous else None),
            photo_url=payload.get("photoUrl") or (previous.photo_url if previous else None),
            email_verified=bool(payload.get("emailVerified", previous.email_verified if previous else False)),
            id_token=payload.get("idToken") or (previous.id_token if previous else ""),
            refresh_token=payload.get("refreshToken") or (previous.refresh_token if previous else ""),
            expires_at=self._clock() + float(payload.get("expiresIn", 3600)),
        )

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(f"{self._base_url}/{method}", json=body)

    def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._http.post(url, params={"key": self._api_key}, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("identity_request_failed", url=url, error=str(exc))
            raise TransientIOError("Identity provider unreachable", cause=str(exc)) from exc

        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                logger.warning("identity_response_malformed", url=url, error=str(exc))
                raise TransientIOError("Identity provider returned a malformed response", cause=str(exc)) from exc

        code = _error_code(response)
        if response.status_code >= 500:
            raise TransientIOError("Identity provider error", cause=code)
        logger.info("identity_request_rejected", code=code)
        raise AuthError(AUTH_ERROR_MESSAGES.get(code, code.replace("_", " ").capitalize()), code=code)
