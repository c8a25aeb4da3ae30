from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class ConnectionProbe:
    """Lightweight health and model-listing calls shared by the HTTP adapters."""

    def __init__(self, client: httpx.AsyncClient, label: str) -> None:
        self.client = client
        self.label = label

    async def check(self, method: str, url: str, **kwargs) -> tuple[bool, str]:
        """Return ``(connected, message)``; never raises for HTTP or network failures."""
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("probe.unreachable", extra={"backend": self.label, "error": str(e)[:200]})
            return False, f"Cannot connect to {self.label}: {e or type(e).__name__}"
        if resp.is_success:
            return True, f"Connected to {self.label}"
        detail = error_detail(resp)
        logger.warning(
            "probe.http_error", extra={"backend": self.label, "status": resp.status_code}
        )
        message = f"{self.label} server error: HTTP {resp.status_code}"
        if detail:
            message = f"{message} - {detail}"
        return False, message

    async def list_models(self, url: str, prefix: str = "", **kwargs) -> list[str]:
        """Names from a ``{"models": [{"name": ...}]}`` listing.

        Any failure yields an empty list, which means "unknown", not "none".
        """
        try:
            resp = await self.client.get(url, **kwargs)
            resp.raise_for_status()
            models = resp.json().get("models")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.info("probe.models_unavailable", extra={"backend": self.label, "error": str(e)[:200]})
            return []
        if not isinstance(models, list):
            return []
        names = []
        for entry in models:
            name = entry.get("name") if isinstance(entry, dict) else None
            if not isinstance(name, str) or not name:
                continue
            if prefix and name.startswith(prefix):
                name = name[len(prefix) :]
            names.append(name)
        return names


def error_detail(resp: httpx.Response, limit: int = 200) -> str:
    """Best readable message from an error body: `error.message`, `error`, or a raw excerpt."""
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:limit]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return resp.text[:limit]
