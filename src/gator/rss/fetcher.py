import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

import requests

from ..errors import FetchCancelled, NetworkError
from ..models import RSSFeed
from .parser import parse_feed

logger = logging.getLogger(__name__)

USER_AGENT = "gator"
CHUNK_SIZE = 8192
# How often a waiting fetch looks at the cancel event
CANCEL_POLL_INTERVAL = 0.1


class BaseFetcher(ABC):
    """Abstract base class for RSS fetchers"""

    @abstractmethod
    def fetch(self, url: str, cancel: Optional[threading.Event] = None) -> RSSFeed:
        """Fetch and parse the RSS document at url"""
        pass

    def close(self) -> None:
        pass


class HttpFetcher(BaseFetcher):
    """HTTP-based RSS fetcher

    Every call downloads the whole document. There is no retry, caching or
    conditional GET.

    With a cancel event the request runs on a daemon thread and fetch()
    returns as soon as the event is set, even while connecting or waiting
    for headers. The abandoned request then ends on its own, at the latest
    when the timeout expires, and closes its response without reading the
    rest of the body.
    """

    def __init__(self, timeout: float = 30, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT

    def fetch(self, url: str, cancel: Optional[threading.Event] = None) -> RSSFeed:
        if cancel is None:
            content = self.download(url)
        else:
            content = self._download_cancellable(url, cancel)
        return parse_feed(content)

    def download(self, url: str, cancel: Optional[threading.Event] = None) -> bytes:
        """Download the body, checking cancel between chunks"""
        if cancel is not None and cancel.is_set():
            raise FetchCancelled(f"fetch of {url} cancelled")

        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as response:
                response.raise_for_status()
                chunks = []
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel is not None and cancel.is_set():
                        raise FetchCancelled(f"fetch of {url} cancelled")
                    chunks.append(chunk)
        except requests.RequestException as e:
            raise NetworkError(f"cannot fetch {url}: {e}") from e

        content = b"".join(chunks)
        logger.debug(f"Fetched {len(content)} bytes from {url}")
        return content

    def _download_cancellable(self, url: str, cancel: threading.Event) -> bytes:
        if cancel.is_set():
            raise FetchCancelled(f"fetch of {url} cancelled")

        outcome = {}
        done = threading.Event()

        def worker():
            try:
                outcome["content"] = self.download(url, cancel)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        thread = threading.Thread(target=worker, name=f"fetch {url}", daemon=True)
        thread.start()
        while not done.wait(CANCEL_POLL_INTERVAL):
            if cancel.is_set():
                logger.debug(f"Abandoning in-flight request to {url}")
                raise FetchCancelled(f"fetch of {url} cancelled")

        if "error" in outcome:
            raise outcome["error"]
        return outcome["content"]

    def close(self) -> None:
        self.session.close()
