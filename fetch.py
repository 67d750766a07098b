"""
fetch.py — download the active travelways export.

The export endpoint answers with ``{"resultUrl": ...}``; while the export is
still being prepared the URL is empty and we poll again after a pause.
"""

import logging
import time

import requests

from config import (
    EXPORT_DEADLINE, EXPORT_POLL_INTERVAL, HTTP_MAX_RETRIES, HTTP_TIMEOUT, TRAVELWAYS_EXPORT_URL,
)

logger = logging.getLogger(__name__)


class DownloadError(RuntimeError):
    pass


class ExportDownloader:
    """Polls an export endpoint and fetches the finished file."""

    def __init__(self, export_url=TRAVELWAYS_EXPORT_URL, session=None):
        self.export_url = export_url
        self.session = session or requests.Session()
        self.poll_interval = EXPORT_POLL_INTERVAL
        self.deadline = EXPORT_DEADLINE
        self.max_retries = HTTP_MAX_RETRIES
        self.retry_delay = EXPORT_POLL_INTERVAL
        self.timeout = HTTP_TIMEOUT

    def _get(self, url: str) -> requests.Response:
        """GET with retries on rate limiting, 5xx and timeouts."""
        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, timeout=self.timeout)
            except requests.exceptions.Timeout:
                logger.warning(f"Request timeout on attempt {attempt + 1}, retrying...")
                time.sleep(self.retry_delay)
                continue
            except requests.exceptions.RequestException as e:
                raise DownloadError(f"network error fetching {url}: {e}") from e

            if response.status_code == 429 or response.status_code >= 500:
                logger.warning(f"HTTP {response.status_code} from {url}, retrying...")
                time.sleep(self.retry_delay * (attempt + 1))
                continue
            if response.status_code // 100 != 2:
                raise DownloadError(f"unexpected status code {response.status_code} from {url}")
            return response

        raise DownloadError(f"giving up on {url} after {self.max_retries} attempts")

    def result_url(self) -> str:
        """Poll the export endpoint until it hands out a download URL."""
        give_up_at = time.monotonic() + self.deadline
        while True:
            response = self._get(self.export_url)
            try:
                body = response.json()
            except ValueError as e:
                raise DownloadError(f"export endpoint returned invalid JSON: {e}") from e
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise DownloadError(f"export endpoint returned {type(body).__name__}, not an object")
            url = body.get("resultUrl") or ""
            if url:
                return url
            if time.monotonic() >= give_up_at:
                raise DownloadError(f"export not ready after {self.deadline}s")
            logger.info("Export not ready, waiting")
            time.sleep(self.poll_interval)

    def download(self) -> bytes:
        url = self.result_url()
        logger.info(f"Downloading from {url}")
        content = self._get(url).content
        logger.info(f"Downloaded {len(content)} bytes")
        return content


def download_travelways(export_url: str = TRAVELWAYS_EXPORT_URL) -> bytes:
    return ExportDownloader(export_url).download()
