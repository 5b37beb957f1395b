"""HTTP client for the storefront API.

Wraps httpx with:
- bearer-token authentication (token pulled from a provider callable per request)
- mapping of error responses onto the storefront exception types
- exponential backoff retries (tenacity) for idempotent reads only
"""

from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from errors import (
    NotAuthenticatedError,
    NotFoundError,
    RemoteRequestError,
    TransientIOError,
    ValidationError,
)
from observability import get_logger
from schemas import Product, ProductId, PurchaseItem, PurchaseRecord

logger = get_logger("api")

TokenProvider = Callable[[], str]


def _server_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or response.reason_phrase)
    return response.reason_phrase


def raise_for_response(response: httpx.Response, *, resource: Optional[str] = None, identifier: Any = None) -> None:
    """Convert a non-2xx response into a storefront exception."""
    if response.is_success:
        return
    message = _server_message(response)
    status = response.status_code
    if status == 400:
        raise ValidationError(message, status_code=status)
    if status == 401:
        raise NotAuthenticatedError(message)
    if status == 404:
        raise NotFoundError(message, resource=resource, identifier=identifier)
    raise RemoteRequestError(message, status_code=status)


ModelT = TypeVar("ModelT", bound=BaseModel)


def _model_list(body: Dict[str, Any], field: str, model: Type[ModelT]) -> List[ModelT]:
    items = body.get(field)
    if items is None:
        return []
    if not isinstance(items, list):
        raise TypeError(f"{field} must be a list")
    return [model.model_validate(item) for item in items]


class StorefrontAPI:
    """Client for the wishlist, purchase-history and catalog endpoints.

    A success response that cannot be decoded into the expected shape is
    reported as RemoteRequestError carrying the response status.

    Example:
        >>> api = StorefrontAPI(
        ...     "http://localhost:8000",
        ...     token_provider=identity.get_id_token,
        ...     http_client=httpx.Client(timeout=10.0),
        ... )
        >>> api.get_wishlist()
        []
    """

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.Client,
        token_provider: Optional[TokenProvider] = None,
        max_attempts: int = 3,
        initial_wait_seconds: float = 0.5,
        max_wait_seconds: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._token_provider = token_provider
        self._max_attempts = max_attempts
        self._initial_wait = initial_wait_seconds
        self._max_wait = max_wait_seconds

    # -- wishlist --

    def get_wishlist(self) -> List[Product]:
        return self._get(
            "/api/wishlist",
            authenticated=True,
            parse=lambda body: _model_list(body, "wishlist", Product),
        )

    def add_to_wishlist(self, product: Product) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/api/wishlist/add",
            authenticated=True,
            json={"product": product.to_wire()},
            resource="product",
            identifier=product.id,
        )

    def remove_from_wishlist(self, product_id: ProductId) -> Dict[str, Any]:
        return self._request(
            "DELETE",
            f"/api/wishlist/remove/{quote(str(product_id), safe='')}",
            authenticated=True,
            resource="product",
            identifier=product_id,
        )

    # -- purchase history --

    def get_purchase_history(self) -> List[PurchaseRecord]:
        return self._get(
            "/api/purchase-history",
            authenticated=True,
            parse=lambda body: _model_list(body, "purchaseHistory", PurchaseRecord),
        )

    def add_purchase(
        self,
        items: List[PurchaseItem],
        *,
        order_id: Optional[str] = None,
        total_amount: Optional[float] = None,
        date: Optional[str] = None,
    ) -> str:
        """Record a purchase; returns the order id the server confirmed.

        A confirmation without ``orderId`` falls back to the id that was sent.
        """
        payload: Dict[str, Any] = {"items": [item.model_dump(exclude_none=True) for item in items]}
        if order_id is not None:
            payload["orderId"] = order_id
        if total_amount is not None:
            payload["totalAmount"] = total_amount
        if date is not None:
            payload["date"] = date

        def confirmed_order_id(body: Dict[str, Any]) -> str:
            confirmed = body.get("orderId") or order_id
            if not isinstance(confirmed, str) or not confirmed:
                raise ValueError("confirmation has no orderId")
            return confirmed

        return self._request(
            "POST",
            "/api/purchase-history/add",
            authenticated=True,
            json=payload,
            parse=confirmed_order_id,
        )

    def get_purchase(self, order_id: str) -> PurchaseRecord:
        return self._get(
            f"/api/purchase-history/{quote(order_id, safe='')}",
            authenticated=True,
            resource="order",
            identifier=order_id,
            parse=lambda body: PurchaseRecord.model_validate(body["purchase"]),
        )

    # -- catalog --

    def list_products(self) -> List[Product]:
        return self._get("/api/products", parse=lambda body: _model_list(body, "products", Product))

    def list_discounted_products(self) -> List[Product]:
        return self._get("/api/products/sale", parse=lambda body: _model_list(body, "products", Product))

    def get_product(self, product_id: ProductId) -> Product:
        return self._get(
            f"/api/products/{quote(str(product_id), safe='')}",
            resource="product",
            identifier=product_id,
            parse=lambda body: Product.model_validate(body["product"]),
        )

    # -- transport --

    def _get(self, path: str, *, authenticated: bool = False, **kwargs: Any) -> Any:
        """GET with retries on transient failures."""
        for attempt in Retrying(
            retry=retry_if_exception_type(TransientIOError),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._initial_wait, max=self._max_wait)
            + wait_random(0, self._initial_wait),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("api_request_retry", path=path, attempt=attempt.retry_state.attempt_number)
                return self._request("GET", path, authenticated=authenticated, **kwargs)
        raise RuntimeError("Unexpected retry state")  # pragma: no cover

    def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = False,
        json: Optional[Dict[str, Any]] = None,
        resource: Optional[str] = None,
        identifier: Any = None,
        parse: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if authenticated:
            if self._token_provider is None:
                raise NotAuthenticatedError()
            headers["Authorization"] = f"Bearer {self._token_provider()}"

        url = f"{self.base_url}{path}"
        try:
            response = self._http.request(method, url, headers=headers, json=json)
        except (httpx.HTTPError, RuntimeError) as exc:
            # httpx raises RuntimeError once the client has been closed
            logger.warning("api_request_failed", method=method, path=path, error=str(exc))
            raise TransientIOError(f"{method} {path} failed", cause=str(exc)) from exc

        if response.status_code >= 500:
            logger.warning("api_server_error", method=method, path=path, status=response.status_code)
        raise_for_response(response, resource=resource, identifier=identifier)

        try:
            body = response.json()
            if not isinstance(body, dict):
                raise TypeError("response body must be a JSON object")
            result = parse(body) if parse is not None else body
        except (ValueError, TypeError, KeyError, PydanticValidationError) as exc:
            logger.warning(
                "api_response_malformed", method=method, path=path, status=response.status_code, error=str(exc)
            )
            raise RemoteRequestError(
                f"Malformed response from {method} {path}", status_code=response.status_code
            ) from exc
        logger.debug("api_request_completed", method=method, path=path, status=response.status_code)
        return result
