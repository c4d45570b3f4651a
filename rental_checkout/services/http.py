"""Shared plumbing for the httpx-based collaborator clients."""
import logging
from typing import Any, Type

import httpx

from rental_checkout.core.config import settings
from rental_checkout.core.errors import CheckoutError

logger = logging.getLogger(__name__)


def create_client(base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=settings.HTTP_TIMEOUT,
        headers={"Content-Type": "application/json"},
    )


def unwrap(body: Any, error_cls: Type[CheckoutError]) -> Any:
    # Backend services wrap payloads as {"success": bool, "message": str, "data": ...}
    if isinstance(body, dict) and "success" in body:
        if not body.get("success"):
            raise error_cls(body.get("message") or "Request was not successful", {"body": body})
        return body.get("data")
    return body


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    error_cls: Type[CheckoutError],
    **kwargs,
) -> Any:
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        try:
            payload = e.response.json()
        except ValueError:
            payload = e.response.text
        logger.error(f"{method} {url} returned {status}")
        raise error_cls(
            f"{method} {url} returned {status}",
            {"status_code": status, "body": payload},
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"{method} {url} failed: {e!r}")
        raise error_cls(f"{method} {url} failed: {e.__class__.__name__}") from e
    except ValueError as e:
        logger.error(f"{method} {url} returned an undecodable body")
        raise error_cls(f"{method} {url} returned an undecodable body") from e
    return unwrap(body, error_cls)


def schema_errors(e) -> list:
    """JSON-safe summary of a pydantic ValidationError."""
    return e.errors(include_url=False, include_context=False, include_input=False)
