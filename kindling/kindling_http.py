import asyncio
from typing import Iterable, Optional

import httpx

from kindling.kindling_capabilities import DEFAULT_EXTENSIONS, _lang_for
from kindling.kindling_datatypes import Resource, ResourceRequest


async def http_fetch(client: httpx.AsyncClient, url: str, *, retries: int = 2,
                     backoff: float = 0.2) -> Optional[str]:
    """
    GET `url` and return its body as text.

    Returns None on 404 so callers can try the next candidate. Other non-2xx
    responses raise. Transport errors are retried with exponential backoff.
    """
    last_exc = None
    for attempt in range(retries + 1):
        try:
            resp = await client.get(url)
        except httpx.TransportError as e:
            last_exc = e
            if attempt < retries:
                await asyncio.sleep(backoff * (2 ** attempt))
                continue
            raise last_exc
        if resp.status_code == 404:
            return None
        if 200 <= resp.status_code < 300:
            return resp.text
        preview = (resp.text or "")[:200]
        raise RuntimeError(f"HTTP {resp.status_code} for {url}: {preview}")
    raise last_exc


class HttpResolver:
    """Resolve namespaces by fetching `<base_url>/<path><ext>` over HTTP."""

    def __init__(self, base_url: str, extensions: Iterable[str] = DEFAULT_EXTENSIONS, *,
                 timeout: float = 5.0, retries: int = 2, backoff: float = 0.2,
                 headers: Optional[dict] = None):
        self.base_url = base_url.rstrip("/")
        self.extensions = tuple(extensions)
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.headers = dict(headers or {})

    async def __call__(self, request: ResourceRequest) -> Optional[Resource]:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True,
                                     headers=self.headers) as client:
            for ext in self.extensions:
                url = f"{self.base_url}/{request.path}{ext}"
                body = await http_fetch(client, url, retries=self.retries, backoff=self.backoff)
                if body is not None:
                    return Resource(_lang_for(ext), body, request.name, url)
        return None

    def __repr__(self):
        return f"HttpResolver({self.base_url!r})"
