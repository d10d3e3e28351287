#!/usr/bin/env python3
"""Shared GET helper for the upstream REST clients."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from constants import C_RED, C_RESET
from errors import TransientUpstreamError


def log_error(message: str) -> None:
    """Centralized error logging."""
    print(f"{C_RED}{message}{C_RESET}")


async def api_get(
    url: str,
    session: aiohttp.ClientSession,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = 30,
) -> Any:
    """Makes a single async GET request. Failures raise TransientUpstreamError; nothing is retried."""
    try:
        async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            return await response.json()
    except asyncio.TimeoutError as exc:
        raise TransientUpstreamError(url, f"timed out after {timeout}s") from exc
    except aiohttp.ClientError as exc:
        raise TransientUpstreamError(url, str(exc) or exc.__class__.__name__) from exc
    except ValueError as exc:
        raise TransientUpstreamError(url, f"invalid JSON payload: {exc}") from exc
