"""Single-attempt HTTP fetcher for configured data sources.

Performs exactly one request per call and either returns the raw body or
raises a classified TransientFetchError. There are no retries here: the
scheduler owns retry and backoff policy.

Secret placeholders ($NAME or ${NAME}) in the URL and header values are
resolved at request time through ``secret_resolver``. Unresolved
placeholders are sent verbatim and logged.
"""

import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from advisor.exceptions import FetchFailureKind, TransientFetchError
from advisor.logging import get_logger
from advisor.models import DataSourceConfig

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z0-9_]+)\}|\$([A-Za-z0-9_]+)")


@dataclass(frozen=True)
class RawPayload:
    """Undecoded response body of one successful fetch."""

    source_key: str
    status: int
    body: str
    latency_seconds: float


def resolve_placeholders(
    value: str, resolver: Callable[[str], str | None]
) -> tuple[str, list[str]]:
    """Substitute $NAME / ${NAME} placeholders. Returns (text, unresolved names)."""
    unresolved: list[str] = []

    def _sub(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        secret = resolver(name)
        if secret is None:
            unresolved.append(name)
            return match.group(0)
        return secret

    return _PLACEHOLDER.sub(_sub, value), unresolved


class SourceFetcher:
    """Executes one request for a DataSourceConfig's request template.

    Usage:
        fetcher = SourceFetcher(timeout_seconds=10)
        await fetcher.connect()
        payload = await fetcher.fetch(config)
        await fetcher.close()
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        secret_resolver: Callable[[str], str | None] = os.environ.get,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._resolve = secret_resolver
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        """Create the HTTP session if one was not injected."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this fetcher created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _render(self, config: DataSourceConfig) -> tuple[str, dict[str, str]]:
        url, missing = resolve_placeholders(config.request.url, self._resolve)
        headers: dict[str, str] = {}
        for name, value in config.request.headers.items():
            headers[name], unresolved = resolve_placeholders(value, self._resolve)
            missing.extend(unresolved)
        if missing:
            logger.warning(
                "unresolved_secret_placeholders",
                source_key=config.source_key,
                placeholders=sorted(set(missing)),
            )
        return url, headers

    async def fetch(self, config: DataSourceConfig) -> RawPayload:
        """Perform one request attempt.

        Raises:
            TransientFetchError: On network error, timeout, or non-2xx status.
        """
        if self._session is None or self._session.closed:
            await self.connect()
        if self._session is None:
            raise RuntimeError("HTTP session not available. Call connect() first.")

        url, headers = self._render(config)
        start = time.monotonic()
        try:
            async with self._session.request(
                config.request.method,
                url,
                headers=headers,
                timeout=self._timeout,
            ) as response:
                body = await response.text()
                latency = time.monotonic() - start
                if not 200 <= response.status < 300:
                    raise TransientFetchError(
                        config.source_key,
                        FetchFailureKind.HTTP_STATUS,
                        f"HTTP {response.status}: {body[:200]}",
                        status=response.status,
                    )
        except TimeoutError as e:
            raise TransientFetchError(
                config.source_key,
                FetchFailureKind.TIMEOUT,
                f"no response within {self._timeout.total}s",
            ) from e
        except aiohttp.ClientError as e:
            raise TransientFetchError(
                config.source_key, FetchFailureKind.NETWORK, str(e) or type(e).__name__
            ) from e

        logger.debug(
            "source_fetched",
            source_key=config.source_key,
            status=response.status,
            latency_ms=round(latency * 1000, 1),
        )
        return RawPayload(
            source_key=config.source_key,
            status=response.status,
            body=body,
            latency_seconds=latency,
        )
