from __future__ import annotations

from typing import Optional, Protocol

import requests

from scroll_harvester.core.models import RawPage, RequestSpec
from scroll_harvester.http.policies import CancellableDelay, RetryPolicy, backoff_sleep
from scroll_harvester.utils.logging import get_logger

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
    "X-Requested-With": "XMLHttpRequest",
}


class HttpClient(Protocol):
    """Protocol for HTTP clients."""

    def send(self, req: RequestSpec) -> RawPage: ...


class RequestsHttpClient:
    """HTTP client using the requests library."""

    def __init__(
        self,
        timeout_s: float = 30,
        retry: RetryPolicy | None = None,
        delay: Optional[CancellableDelay] = None,
        session: Optional[requests.Session] = None,
    ):
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self.delay = delay or CancellableDelay()
        self.log = get_logger("scroll_harvester.http")

    def send(self, req: RequestSpec) -> RawPage:
        """Send an HTTP request with retry logic on transient failures."""
        last_exc: Exception | None = None

        for attempt in range(self.retry.max_attempts):
            try:
                r = self.session.request(
                    method=req.method,
                    url=req.url,
                    headers=req.headers,
                    params=req.params,
                    json=req.body if isinstance(req.body, (dict, list)) else None,
                    data=None if isinstance(req.body, (dict, list)) else req.body,
                    timeout=self.timeout_s,
                )
                page = RawPage(
                    url=r.url or req.url,
                    status_code=r.status_code,
                    content_type=r.headers.get("Content-Type", ""),
                    body=r.text,
                )

                if page.status_code in self.retry.retry_statuses and attempt < self.retry.max_attempts - 1:
                    self.log.warning("Retrying %s (status=%s, attempt=%s)", req.url, page.status_code, attempt + 1)
                    if not backoff_sleep(self.retry, attempt, self.delay):
                        return page
                    continue

                return page

            except requests.RequestException as e:
                last_exc = e
                if attempt < self.retry.max_attempts - 1:
                    self.log.warning("Retrying %s (exception=%s, attempt=%s)", req.url, type(e).__name__, attempt + 1)
                    if backoff_sleep(self.retry, attempt, self.delay):
                        continue
                raise

        # Should never hit
        raise last_exc if last_exc else RuntimeError("HTTP send failed unexpectedly")
