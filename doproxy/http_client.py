# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
HTTP client for the upstream inference endpoint with retry logic.

Transient failures (429 and 5xx gateway statuses, connection errors) are
retried with exponential backoff. A numeric retry-after header from the
upstream overrides the computed delay.
"""

import asyncio
from typing import Any, Dict, FrozenSet, List, Optional

import httpx
from loguru import logger

from doproxy.config import (
    DO_API_KEY,
    RETRY_STATUS_CODES,
    UPSTREAM_BASE_RETRY_DELAY,
    UPSTREAM_MAX_RETRIES,
    UPSTREAM_TIMEOUT,
)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a retry-after header given in whole seconds.

    HTTP-date values are not honored; the computed backoff is used instead.

    Returns:
        Delay in seconds, or None if the header is absent or not numeric
    """
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return float(value)


class UpstreamHttpClient:
    """
    Async HTTP client that forwards requests upstream with retries.

    One instance is shared by the application; every request gets its own
    retry loop and nothing else is kept between requests.

    Example:
        >>> client = UpstreamHttpClient(api_key="key")
        >>> response = await client.request_with_retry("POST", url, b"{}", stream=True)
        >>> await client.close()
    """

    def __init__(
        self,
        api_key: str = DO_API_KEY,
        max_retries: int = UPSTREAM_MAX_RETRIES,
        base_delay: float = UPSTREAM_BASE_RETRY_DELAY,
        retry_statuses: FrozenSet[int] = RETRY_STATUS_CODES,
        timeout: float = UPSTREAM_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initializes the HTTP client.

        Args:
            api_key: Upstream API key sent as a bearer token
            max_retries: Retries after the first attempt
            base_delay: Base backoff delay in seconds
            retry_statuses: Statuses that trigger a retry
            timeout: Read timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.retry_statuses = retry_statuses
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before the next attempt: retry-after if given, else base * 2**attempt."""
        if retry_after is not None:
            return retry_after
        return self.base_delay * (2**attempt)

    async def request_with_retry(
        self,
        method: str,
        url: str,
        content: Optional[bytes] = None,
        stream: bool = False,
    ) -> httpx.Response:
        """
        Send a request upstream, retrying transient failures.

        The response of the last attempt is returned even when its status is
        retriable, so the caller can relay the upstream error verbatim.

        Args:
            method: HTTP method
            url: Full upstream URL
            content: Raw request body bytes (or None)
            stream: Return an unread streaming response

        Returns:
            httpx.Response (open if stream=True; the caller must close it)

        Raises:
            httpx.TransportError: If every attempt failed at the transport level
        """
        last_error: Optional[httpx.TransportError] = None

        for attempt in range(self.max_retries + 1):
            is_last = attempt == self.max_retries
            try:
                request = self.client.build_request(
                    method, url, headers=self._headers(), content=content
                )
                response = await self.client.send(request, stream=stream)
            except httpx.TransportError as e:
                last_error = e
                if is_last:
                    break
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "Upstream error, retry in {:.2f}s ({}/{}): {}",
                    delay,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code not in self.retry_statuses or is_last:
                return response

            delay = self._backoff_delay(
                attempt, parse_retry_after(response.headers.get("retry-after"))
            )
            logger.warning(
                "Upstream HTTP {}, retry in {:.2f}s ({}/{})",
                response.status_code,
                delay,
                attempt + 1,
                self.max_retries,
            )
            await response.aclose()
            await asyncio.sleep(delay)

        logger.error("Upstream request failed after {} attempt(s): {}", self.max_retries + 1, last_error)
        raise last_error

    async def fetch_models(self, url: str) -> Optional[List[Dict[str, Any]]]:
        """
        Fetch the upstream model list.

        Returns:
            List of model dicts, or None if the upstream is unreachable or
            answers with anything but a {"data": [...]} document
        """
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch upstream models: {}", e)
            return None

        if response.status_code != 200:
            logger.warning("Upstream models endpoint returned HTTP {}", response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            return None

        models = data.get("data") if isinstance(data, dict) else None
        return models if isinstance(models, list) else None

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()

    async def __aenter__(self) -> "UpstreamHttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
