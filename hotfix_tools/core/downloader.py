"""HTTP downloader with retry, slow-speed abort and atomic file writes.

Failed attempts are retried with exponential backoff. A 404 is final and
surfaces immediately as :class:`RemoteNotFoundError`; everything else
(timeouts, transport errors, non-404 statuses, slow-speed aborts) is retried
until the attempt cap and then surfaces as :class:`TransientFetchError`.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import httpx
import structlog

from hotfix_tools.core.config import SyncConfig
from hotfix_tools.core.utils import clean_url, format_size

logger = structlog.get_logger()

T = TypeVar("T")

TEMP_SUFFIX = ".temp"


class FetchError(Exception):
    """Base class for download failures.

    Attributes:
        url: URL that failed
    """

    def __init__(self, message: str, *, url: str):
        self.url = url
        super().__init__(message)


class RemoteNotFoundError(FetchError):
    """The origin answered 404 for the URL."""


class TransientFetchError(FetchError):
    """All attempts failed with retryable errors.

    Attributes:
        attempts: Number of attempts made
        last_error: Description of the final failure
    """

    def __init__(self, message: str, *, url: str, attempts: int, last_error: str | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, url=url)


class SlowDownloadError(Exception):
    """Throughput stayed under the threshold for too many windows."""


def temp_path_for(dest: Path) -> Path:
    """Temporary path a download is streamed to before the rename."""
    return dest.with_name(dest.name + TEMP_SUFFIX)


class Downloader:
    """Blocking HTTP downloader.

    Args:
        config: Sync configuration
        client: Optional pre-built HTTP client (tests inject a mock transport)
        sleep: Backoff sleep function
        clock: Monotonic clock used for throughput sampling
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or SyncConfig()
        self._client = client
        self._sleep = sleep
        self._clock = clock
        self.requests = 0

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    def fetch_bytes(self, url: str) -> bytes:
        """Fetch a small resource fully into memory.

        Raises:
            RemoteNotFoundError: On HTTP 404
            TransientFetchError: When every attempt failed
        """
        url = clean_url(url)
        return self._with_retry(url, lambda: self._get_bytes(url))

    def fetch_to_file(self, url: str, dest: Path) -> int:
        """Stream a resource to ``dest`` through a temporary file.

        A temporary file left behind by an interrupted run is discarded first.

        Returns:
            Number of bytes written

        Raises:
            RemoteNotFoundError: On HTTP 404
            TransientFetchError: When every attempt failed
            OSError: If the destination directory cannot be prepared
        """
        url = clean_url(url)
        dest.parent.mkdir(parents=True, exist_ok=True)

        temp_path = temp_path_for(dest)
        if temp_path.exists():
            logger.warning("stale_temp_removed", path=str(temp_path))
            temp_path.unlink()

        return self._with_retry(url, lambda: self._stream_to_file(url, dest, temp_path))

    def _with_retry(self, url: str, attempt_fn: Callable[[], T]) -> T:
        last_error: str | None = None

        for attempt in range(1, self.config.max_retries + 1):
            try:
                return attempt_fn()
            except RemoteNotFoundError:
                raise
            except (httpx.HTTPError, SlowDownloadError, OSError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning("download_retry", url=url, attempt=attempt, error=last_error)

            if attempt < self.config.max_retries:
                backoff = self.config.base_backoff * (2 ** (attempt - 1))
                self._sleep(backoff)

        logger.error("download_failed", url=url, attempts=self.config.max_retries, error=last_error)
        raise TransientFetchError(
            f"Failed to download {url} after {self.config.max_retries} attempts: {last_error}",
            url=url,
            attempts=self.config.max_retries,
            last_error=last_error,
        )

    def _check_status(self, response: httpx.Response, url: str) -> None:
        if response.status_code == 404:
            logger.warning("remote_not_found", url=url)
            raise RemoteNotFoundError(f"Not found: {url}", url=url)
        response.raise_for_status()

    def _get_bytes(self, url: str) -> bytes:
        self.requests += 1
        response = self.client.get(url)
        self._check_status(response, url)
        return response.content

    def _stream_to_file(self, url: str, dest: Path, temp_path: Path) -> int:
        self.requests += 1
        start = self._clock()
        written = 0

        try:
            with self.client.stream("GET", url) as response:
                self._check_status(response, url)
                with open(temp_path, "wb") as f:
                    written = self._copy_stream(response, f.write, start)
            temp_path.replace(dest)
        except BaseException:
            if temp_path.exists():
                temp_path.unlink()
            raise

        elapsed = max(self._clock() - start, 1e-6)
        logger.info(
            "download_complete",
            url=url,
            size=format_size(written),
            seconds=round(elapsed, 2),
            speed=f"{format_size(int(written / elapsed))}/s",
        )
        return written

    def _copy_stream(self, response: httpx.Response, write: Callable[[bytes], object], start: float) -> int:
        written = 0
        window_start = start
        window_bytes = 0
        strikes = 0

        for chunk in response.iter_bytes(self.config.chunk_size):
            write(chunk)
            written += len(chunk)
            window_bytes += len(chunk)

            now = self._clock()
            elapsed = now - window_start
            if elapsed >= self.config.slow_speed_window:
                speed = window_bytes / elapsed
                if speed < self.config.slow_speed_threshold:
                    strikes += 1
                    logger.debug("download_slow", speed=int(speed), strikes=strikes)
                    if strikes >= self.config.slow_speed_strikes:
                        raise SlowDownloadError(
                            f"Throughput under {format_size(int(self.config.slow_speed_threshold))}/s "
                            f"for {strikes} windows"
                        )
                else:
                    strikes = 0
                window_start = now
                window_bytes = 0

        return written

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()

    def __enter__(self) -> Downloader:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
