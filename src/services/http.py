"""Shared httpx plumbing for every REST adapter: retries, timeouts, metrics.

Timeouts, connection errors and 5xx responses are retried with
exponential backoff; 4xx responses fail immediately.  Whatever finally
fails is raised as :class:`~src.errors.PortTransportError` so callers
never need to know about httpx.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from src.errors import PortTransportError
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0


class RetryingHTTPClient:
    """Base class for a JSON REST client bound to one base URL.

    Subclasses set ``service`` (used in log lines, metrics and errors) and
    call :meth:`_request`.
    """

    service = "http"

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ):
        self._base_url = base_url
        self._client = client or httpx.Client(
            base_url=base_url,
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Execute a request with exponential-backoff retries and return the JSON body."""
        operation = f"{method} {path.split('?')[0]}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                with metrics.timed(self.service, operation):
                    response = self._client.request(method, path, params=params, json=json_body, headers=headers)
                    if response.status_code >= 400:
                        kind = "Server" if response.status_code >= 500 else "Client"
                        raise PortTransportError(
                            f"{kind} error {response.status_code}: {response.text[:500]}",
                            service=self.service,
                            status_code=response.status_code,
                        )
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "%s API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    self.service,
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except PortTransportError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning("%s API server error on attempt %d/%d. Retrying…", self.service, attempt, MAX_RETRIES)
                else:
                    raise  # 4xx errors are not retried
            except ValueError as exc:
                raise PortTransportError(
                    f"{self.service} returned a non-JSON body: {exc}", service=self.service,
                ) from exc

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise PortTransportError(
            f"{self.service} request failed after {MAX_RETRIES} attempts: {last_error}",
            service=self.service,
        )
