# -*- coding: utf-8 -*-

# DO Proxy
# Copyright (C) 2025 DO Proxy contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Upstream model list cache for DO Proxy.

Holds the last /v1/models answer from the inference endpoint with a TTL,
so model pickers in clients do not hit the upstream on every refresh.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from doproxy.config import FALLBACK_MODELS, MODEL_CACHE_TTL


class ModelListCache:
    """
    Async-safe TTL cache for the upstream model list.

    Uses lazy loading: the list is fetched on first access and again
    whenever it is stale. If a refresh fails, the previous list is kept;
    if there never was one, the fallback list is served.

    Example:
        >>> cache = ModelListCache()
        >>> models = await cache.get_models(client.fetch_models_from_upstream)
    """

    def __init__(
        self,
        cache_ttl: int = MODEL_CACHE_TTL,
        fallback: Optional[List[Dict[str, Any]]] = None,
    ):
        """
        Initializes the model cache.

        Args:
            cache_ttl: Cache time-to-live in seconds (default from config)
            fallback: Models served when the upstream list was never loaded
        """
        self._models: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._last_update: Optional[float] = None
        self._cache_ttl = cache_ttl
        self._fallback = list(FALLBACK_MODELS if fallback is None else fallback)

    async def update(self, models: List[Dict[str, Any]]) -> None:
        """
        Replace the cached list.

        Entries that are not objects with a string "id" are ignored.
        """
        valid = [m for m in models if isinstance(m, dict) and isinstance(m.get("id"), str)]
        async with self._lock:
            logger.info("Updating model cache. Found {} models.", len(valid))
            self._models = valid
            self._last_update = time.time()

    async def get_models(
        self,
        fetcher: Optional[Callable[[], Awaitable[Optional[List[Dict[str, Any]]]]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return the model list, refreshing it through fetcher when stale.

        Args:
            fetcher: Coroutine function returning the upstream list or None

        Returns:
            Cached models, or the fallback list if nothing was ever loaded
        """
        if fetcher is not None and self.is_stale():
            models = await fetcher()
            if models:
                await self.update(models)
            else:
                logger.warning("Upstream model list unavailable, serving {}", "cached list" if self._models else "fallback list")

        if self._models:
            return list(self._models)
        return list(self._fallback)

    def is_stale(self) -> bool:
        """
        Checks if the cache is stale.

        Returns:
            True if more than cache_ttl seconds have passed since the last
            update, or if the cache was never updated
        """
        if not self._last_update:
            return True
        return time.time() - self._last_update > self._cache_ttl

