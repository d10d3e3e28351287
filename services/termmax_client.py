#!/usr/bin/env python3
from typing import Any, Dict, Optional

import aiohttp

from constants import (
    DEFAULT_CHAIN_ID,
    POOL_LIST_TIMEOUT,
    TERMMAX_API_BASE_URL,
    VAULT_DETAIL_TIMEOUT,
)
from errors import TransientUpstreamError
from services.api import api_get, log_error


class TermMaxClient:
    """Async wrapper for the TermMax alpha pool and vault endpoints."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str = TERMMAX_API_BASE_URL):
        self.session = session
        self.base_url = base_url.rstrip('/')

    async def get_alpha_pools(self, chain_id: int = DEFAULT_CHAIN_ID) -> Dict[str, Any]:
        """Returns the raw alpha listing payload. Raises TransientUpstreamError on failure."""
        url = f"{self.base_url}/v2/alpha/list"
        params = {
            'chainId': chain_id,
            'tags': 'alpha',
            'includeInactive': 'false',
            'sortBy': 'capacity',
            'sortDirection': 'desc',
        }
        data = await api_get(url, self.session, params=params, timeout=POOL_LIST_TIMEOUT)
        if not isinstance(data, dict):
            raise TransientUpstreamError(url, "unexpected payload shape")
        return data.get('data') or {}

    async def get_vault_details(self, chain_id: int, vault_address: str) -> Optional[Dict[str, Any]]:
        """Vault detail (APY, TVL, capacity, display name). Returns None if the lookup fails."""
        url = f"{self.base_url}/vault/item"
        params = {'chainId': chain_id, 'vaultAddress': vault_address}
        try:
            data = await api_get(url, self.session, params=params, timeout=VAULT_DETAIL_TIMEOUT)
        except TransientUpstreamError as exc:
            log_error(f"Error fetching vault {vault_address}: {exc.reason}")
            return None
        if not isinstance(data, dict):
            return None
        return data.get('data')
