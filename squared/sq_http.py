import asyncio
import logging
from typing import Optional, Dict, Tuple

import httpx

logger = logging.getLogger("squared")


async def http_get_text(url: str, config: Optional[Dict] = None, *,
                        transport: Optional[httpx.AsyncBaseTransport] = None) -> Tuple[str, Optional[str]]:
    """
    Fetches a URL with retries and exponential backoff.

    config keys: timeout (seconds, default 5.0), retries (default 2),
    backoff (seconds, default 0.2).
    Returns (decoded body text, Content-Type header). Non-2xx responses raise
    httpx.HTTPStatusError once retries are exhausted.
    """
    cfg = config or {}
    timeout = float(cfg.get('timeout', 5.0))
    retries = int(cfg.get('retries', 2))
    backoff = float(cfg.get('backoff', 0.2))

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
        for attempt in range(retries + 1):
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.text, resp.headers.get("Content-Type")
            except httpx.HTTPError as e:
                if attempt >= retries:
                    raise
                logger.debug("GET %s failed (%s), retry %d/%d", url, e, attempt + 1, retries)
                await asyncio.sleep(backoff * (2 ** attempt))
