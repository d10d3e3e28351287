#!/usr/bin/env python3
from typing import Any, Dict, List

import aiohttp

from constants import (
    DEFILLAMA_API_BASE_URL,
    DEFILLAMA_PROTOCOL_SLUG,
    DEFILLAMA_TIMEOUT,
    DEFILLAMA_YIELDS_API_URL,
)
from errors import TransientUpstreamError
from services.api import api_get


class DefiLlamaClient:
    def __init__(self, session: aiohttp.ClientSession, protocol_slug: str = DEFILLAMA_PROTOCOL_SLUG):
        self.session = session
        self.protocol_slug = protocol_slug

    async def get_protocol(self) -> Dict[str, Any]:
        """Protocol document with the `tvl` series and `chainTvls` breakdown."""
        url = f"{DEFILLAMA_API_BASE_URL}/protocol/{self.protocol_slug}"
        data = await api_get(url, self.session, timeout=DEFILLAMA_TIMEOUT)
        if not isinstance(data, dict):
            raise TransientUpstreamError(url, "unexpected payload shape")
        return data

    async def get_yield_pools(self) -> List[Dict[str, Any]]:
        """Yield pools belonging to the protocol."""
        data = await api_get(DEFILLAMA_YIELDS_API_URL, self.session, timeout=DEFILLAMA_TIMEOUT)
        if not isinstance(data, dict) or not isinstance(data.get('data'), list):
            raise TransientUpstreamError(DEFILLAMA_YIELDS_API_URL, "unexpected payload shape")
        slug = self.protocol_slug.lower()
        return [pool for pool in data['data'] if str(pool.get('project') or '').lower() == slug]
