from __future__ import annotations

import httpx

from reqflow.config import settings

# Shared client; one connection pool for all Redis REST calls.
_http = httpx.AsyncClient(
    timeout=httpx.Timeout(5.0),
    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
)


class UpstashClient:
    """Minimal Upstash Redis REST client (counters only)."""

    def __init__(self, url: str | None = None, token: str | None = None):
        self.url = (url or settings.UPSTASH_REDIS_REST_URL).rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token or settings.UPSTASH_REDIS_REST_TOKEN}"
        }

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def pipeline(self, commands: list[list]) -> list:
        r = await _http.post(
            f"{self.url}/pipeline", headers=self.headers, json=commands
        )
        r.raise_for_status()
        return r.json()

    async def increment_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        """
        Count one hit in a fixed window. Returns (hits, seconds_left).

        EXPIRE NX only sets the TTL on the first hit, so the window does not
        slide forward with every attempt.
        """
        results = await self.pipeline(
            [
                ["INCR", key],
                ["EXPIRE", key, window_seconds, "NX"],
                ["TTL", key],
            ]
        )
        hits = int(results[0].get("result", 0))
        ttl = int(results[2].get("result", -1))
        return hits, ttl if ttl > 0 else window_seconds

    async def ping(self) -> bool:
        r = await _http.get(f"{self.url}/ping", headers=self.headers)
        return r.json().get("result") == "PONG"


cache = UpstashClient()


async def close_http_client() -> None:
    await _http.aclose()
