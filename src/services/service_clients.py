"""HTTP clients for the services the review service depends on.

- ProductServiceClient: product existence check and rating write-back
- UserServiceClient: author display name and avatar
- OrderServiceClient: purchase verification

Calls are made with httpx, forward the caller's bearer token and the current
correlation ID, and are bounded by ``settings.service_timeout_seconds``.
Nothing is retried. Lookups the response depends on raise; best-effort calls
return a BestEffortResult and never raise.
"""
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

import httpx

from src.api.middleware.error_handler import NotFoundException, UpstreamServiceException
from src.lib.logging import get_correlation_id, get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.lib.settings import settings

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BestEffortResult(Generic[T]):
    """Outcome of a call whose failure is logged and replaced by a default."""
    value: T
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "BestEffortResult[T]":
        return cls(value=value, succeeded=True)

    @classmethod
    def failed(cls, default: T, error: str) -> "BestEffortResult[T]":
        return cls(value=default, succeeded=False, error=error)


@dataclass(frozen=True)
class UserProfile:
    """Author details shown next to a review."""
    first_name: str
    last_name: str
    avatar: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def _upstream_error_message(response: httpx.Response, fallback: str) -> str:
    """Prefer the upstream's own error text when it sent JSON."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or fallback
    return fallback


class ServiceClient:
    """Base class holding connection settings shared by all downstream clients."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Service root URL, e.g. http://localhost:8003
            timeout: Per-call timeout in seconds (defaults to settings)
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.service_timeout_seconds
        self.transport = transport

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self, token: str) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def _request(self, method: str, path: str, token: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            return await client.request(method, path, headers=self._headers(token), **kwargs)

    @staticmethod
    def _json_body(response: httpx.Response) -> Optional[dict]:
        """Decoded JSON object, or None when the body is not one."""
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def _record_failure(self, operation: str, error: str, **context: Any) -> None:
        get_metrics_collector().increment_upstream_failures(self.service_name, operation)
        log_with_context(
            logger,
            "error",
            f"{self.service_name} service call failed: {error}",
            service=self.service_name,
            operation=operation,
            **context,
        )


class ProductServiceClient(ServiceClient):
    """Client for the product catalog service."""

    service_name = "product"

    async def get_product(self, product_id: UUID, token: str) -> dict:
        """Fetch a product, failing the caller's request if it cannot be confirmed.

        Raises:
            NotFoundException: the product service answered 404
            UpstreamServiceException: any other error or an unreachable service
        """
        try:
            response = await self._request("GET", f"/api/v1/products/{product_id}", token)
        except httpx.HTTPError as e:
            self._record_failure("get_product", str(e), product_id=str(product_id))
            raise UpstreamServiceException(self.service_name, "Failed to get product details")

        if response.status_code == 404:
            raise NotFoundException("Product", str(product_id))
        if response.is_error:
            message = _upstream_error_message(response, "Failed to get product details")
            self._record_failure("get_product", message, product_id=str(product_id))
            raise UpstreamServiceException(self.service_name, message, response.status_code)

        body = self._json_body(response)
        if body is None:
            self._record_failure(
                "get_product", "unreadable response body", product_id=str(product_id)
            )
            raise UpstreamServiceException(
                self.service_name, "Failed to get product details", response.status_code
            )
        return body.get("product") or {}

    async def update_product_rating(
        self,
        product_id: UUID,
        average_rating: float,
        total_reviews: int,
        token: str,
    ) -> BestEffortResult[bool]:
        """Write the aggregate rating back to the product. Never raises."""
        payload = {"rating": average_rating, "numReviews": total_reviews}
        try:
            response = await self._request(
                "PATCH", f"/api/v1/products/{product_id}", token, json=payload
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._record_failure("update_product_rating", str(e), product_id=str(product_id))
            return BestEffortResult.failed(False, f"Error updating product rating: {e}")
        return BestEffortResult.ok(True)


class UserServiceClient(ServiceClient):
    """Client for the user/identity service."""

    service_name = "user"

    async def get_user(self, user_id: UUID, token: str) -> UserProfile:
        """Fetch an author's profile.

        Raises:
            UpstreamServiceException: the user cannot be resolved for any reason
        """
        try:
            response = await self._request("GET", f"/api/v1/user/{user_id}", token)
        except httpx.HTTPError as e:
            self._record_failure("get_user", str(e), user_id=str(user_id))
            raise UpstreamServiceException(self.service_name, "Failed to get user details")

        if response.is_error:
            message = _upstream_error_message(response, "Failed to get user details")
            self._record_failure("get_user", message, user_id=str(user_id))
            raise UpstreamServiceException(self.service_name, message, response.status_code)

        body = self._json_body(response)
        user = body.get("user") if body else None
        if not isinstance(user, dict):
            self._record_failure("get_user", "response carried no user", user_id=str(user_id))
            raise UpstreamServiceException(
                self.service_name, "Failed to get user details", response.status_code
            )

        return UserProfile(
            first_name=user.get("firstName", ""),
            last_name=user.get("lastName", ""),
            avatar=user.get("avatar"),
        )


class OrderServiceClient(ServiceClient):
    """Client for the order service, used only for purchase verification."""

    service_name = "order"

    def __init__(self, base_url: str, environment: Optional[str] = None, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.environment = (environment or settings.environment).lower()

    async def verify_purchase(self, user_id: UUID, product_id: UUID, token: str) -> BestEffortResult[bool]:
        """Check whether the user bought the product. Never raises.

        Development environments short-circuit to verified; an unconfigured
        order service or any failure yields unverified.
        """
        if self.environment == "development":
            return BestEffortResult.ok(True)
        if not self.is_configured():
            return BestEffortResult.ok(False)

        try:
            response = await self._request(
                "GET",
                "/api/v1/orders/verify-purchase",
                token,
                params={"userId": str(user_id), "productId": str(product_id)},
            )
            response.raise_for_status()
            verified = bool(response.json().get("verified", False))
        except (httpx.HTTPError, ValueError) as e:
            self._record_failure(
                "verify_purchase", str(e), user_id=str(user_id), product_id=str(product_id)
            )
            return BestEffortResult.failed(False, f"Error verifying product purchase: {e}")
        return BestEffortResult.ok(verified)


# Global client instances
product_client = ProductServiceClient(settings.product_service_url)
user_client = UserServiceClient(settings.user_service_url)
order_client = OrderServiceClient(settings.order_service_url)


def get_product_client() -> ProductServiceClient:
    return product_client


def get_user_client() -> UserServiceClient:
    return user_client


def get_order_client() -> OrderServiceClient:
    return order_client
