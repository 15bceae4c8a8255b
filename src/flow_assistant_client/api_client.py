from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from flow_assistant_client.auth import TokenProvider
from flow_assistant_client.errors import (
    TRANSIENT_ERRORS,
    ApiError,
    ForbiddenError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)

_DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}: {exc}. Retrying in {wait:.1f}s (attempt {attempt})...")


class FlowApiClient:
    """HTTP transport for the flow backend: bearer auth, error mapping and retries."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._token_provider = token_provider
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=_DEFAULT_HEADERS,
            timeout=timeout_seconds,
        )
        self._retry_kwargs = {
            "retry": retry_if_exception_type(TRANSIENT_ERRORS),
            "wait": wait_exponential(multiplier=retry_min_wait, min=retry_min_wait, max=retry_max_wait),
            "stop": stop_after_attempt(max(1, max_attempts)),
            "before_sleep": _on_retry,
            "reraise": True,
        }

    async def __aenter__(self) -> FlowApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post(
        self,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._request("POST", path, json=json, params=params)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        async for attempt in AsyncRetrying(**self._retry_kwargs):
            with attempt:
                return await self._send(method, path, json=json, params=clean_params)
        return None

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any,
        params: dict[str, Any],
    ) -> Any:
        logger.debug(f"API request: {method} {path} params={params} body={json}")
        response = await self._exchange(method, path, json=json, params=params)

        if response.status_code == 401 and await self._token_provider.refresh():
            logger.info("Received 401, token refreshed; replaying request")
            response = await self._exchange(method, path, json=json, params=params)

        logger.debug(f"API response: {response.status_code} {method} {path}")
        if response.status_code >= 400:
            error = error_from_response(response)
            logger.error(f"API error: {method} {path} -> {error}")
            raise error
        return _decode_body(response)

    async def _exchange(
        self,
        method: str,
        path: str,
        *,
        json: Any,
        params: dict[str, Any],
    ) -> httpx.Response:
        headers = dict(_DEFAULT_HEADERS)
        token = await self._token_provider.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning(f"No access token available for {method} {path}")

        try:
            return await self._client.request(
                method,
                path,
                json=json,
                params=params or None,
                headers=headers,
            )
        except httpx.TimeoutException as ex:
            raise RequestTimeoutError(f"Request timeout: {method} {path}") from ex
        except httpx.TransportError as ex:
            raise NetworkError(f"Network error: {ex}") from ex


def _decode_body(response: httpx.Response) -> Any:
    if not response.content or not response.content.strip():
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise MalformedResponseError(
            f"Response body is not valid JSON ({response.status_code})",
            status_code=response.status_code,
        ) from ex


def extract_error_message(data: Any, default: str = "An error occurred") -> str:
    if isinstance(data, dict):
        if "detail" in data:
            detail = data["detail"]
            if isinstance(detail, list) and detail:
                parts = []
                for item in detail:
                    if isinstance(item, dict):
                        loc = ".".join(str(p) for p in item.get("loc") or [])
                        parts.append(f"{loc}: {item.get('msg')}")
                    else:
                        parts.append(str(item))
                return ", ".join(parts)
            if isinstance(detail, str):
                return detail
            return default
        return str(data.get("message") or data.get("error") or default)
    if isinstance(data, str) and data.strip():
        return data.strip()
    return default


def error_from_response(response: httpx.Response) -> ApiError:
    try:
        data: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = response.text

    message = extract_error_message(data)
    status = response.status_code
    if status == 401:
        return UnauthorizedError(message)
    if status == 403:
        return ForbiddenError(message)
    if status == 404:
        return NotFoundError(message)
    if status == 422:
        return ValidationError(message, data)
    if status == 429:
        return RateLimitError(message)
    if status in (500, 502, 503, 504):
        return ServerError(message, status_code=status)
    return ApiError(message, status_code=status)
