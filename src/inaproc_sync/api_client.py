from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from .errors import TerminalRequestError, TransientNetworkError
from .logging_utils import log_json


RETRIABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 30
    max_concurrency: int = 2
    rate_limit_per_sec: int = 5
    retry: Dict[str, Any] = field(default_factory=dict)
    period_param: str = "tahun"
    extra_params: Dict[str, Any] = field(default_factory=dict)

    @property
    def max_retries(self) -> int:
        return int(self.retry.get("max_retries", 3))

    @property
    def base_delay(self) -> float:
        return float(self.retry.get("base_delay_seconds", 1.0))

    @property
    def max_delay(self) -> float:
        return float(self.retry.get("max_delay_seconds", 10.0))


def backoff_delay(retry_index: int, base_delay: float, max_delay: float) -> float:
    # No jitter: one caller per remote API, so synchronized retries are not a concern.
    return min(max_delay, base_delay * (2 ** retry_index))


class RateLimiter:
    def __init__(self, rate_per_sec: int) -> None:
        self.rate_per_sec = rate_per_sec
        self._lock = asyncio.Lock()
        self._tokens = rate_per_sec
        self._last = time.monotonic()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last
                refill = int(elapsed * self.rate_per_sec)
                if refill > 0:
                    self._tokens = min(self.rate_per_sec, self._tokens + refill)
                    self._last = now
                if self._tokens > 0:
                    self._tokens -= 1
                    return
            # Sleep outside the lock so other coroutines can proceed
            await asyncio.sleep(max(0.01, 1 / self.rate_per_sec))


class ApiClient:
    def __init__(self, token: str, cfg: ApiConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.token = token
        self.cfg = cfg
        self._semaphore = asyncio.Semaphore(cfg.max_concurrency)
        self._limiter = RateLimiter(cfg.rate_limit_per_sec)
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )
        self._logger = None

    def set_logger(self, logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _log(self, msg: str, **extra: Any) -> None:
        if self._logger:
            log_json(self._logger, msg, **extra)

    async def fetch(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET one page, retrying timeouts, transport errors and 429/5xx.

        2xx and every other status are returned to the caller as-is; a
        retriable failure that survives ``max_retries`` retries raises
        ``TransientNetworkError``.
        """
        params = params or {}
        max_retries = self.cfg.max_retries
        attempt = 0
        while True:
            attempt += 1
            retries_left = attempt <= max_retries
            delay = backoff_delay(attempt - 1, self.cfg.base_delay, self.cfg.max_delay)
            async with self._semaphore:
                await self._limiter.acquire()
                self._log("http_request_start", path=path, attempt=attempt, params=params)
                try:
                    # the client timeout is per phase; this bounds the whole call
                    resp = await asyncio.wait_for(
                        self._client.get(path, params=params), self.cfg.timeout_seconds
                    )
                except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
                    self._log("http_timeout", path=path, attempt=attempt)
                    if not retries_left:
                        raise TransientNetworkError(
                            f"Request to {path} timed out after {attempt} attempts"
                        ) from exc
                    await asyncio.sleep(delay)
                    continue
                except httpx.TransportError as exc:
                    self._log("http_error", path=path, attempt=attempt, error=str(exc))
                    if not retries_left:
                        raise TransientNetworkError(
                            f"Request to {path} failed after {attempt} attempts: {exc}"
                        ) from exc
                    await asyncio.sleep(delay)
                    continue
            if resp.status_code not in RETRIABLE_STATUSES:
                return resp
            if not retries_left:
                raise TransientNetworkError(
                    f"Retriable error: {resp.status_code} from {path} after {attempt} attempts",
                    status_code=resp.status_code,
                )
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                try:
                    delay = min(self.cfg.max_delay, float(retry_after))
                except ValueError:
                    pass
            self._log("http_retry", path=path, status=resp.status_code, attempt=attempt, delay=delay)
            await asyncio.sleep(delay)

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = await self.fetch(path, params)
        if not resp.is_success:
            raise TerminalRequestError(
                f"API Error: {resp.status_code} - {resp.text[:500]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise TerminalRequestError(f"Malformed JSON from {path}: {exc}", status_code=resp.status_code) from exc
