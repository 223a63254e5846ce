"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import pytest


class FakeFetcher:
    """In-memory stand-in for :class:`quadletctl.providers.fetch.UrlFetcher`."""

    def __init__(self, responses: Mapping[str, str]) -> None:
        """Serve *responses* keyed by URL; unknown URLs fail."""
        self.responses = dict(responses)
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, url: str, destination: Path) -> Path:
        """Write the canned body for *url* to *destination*."""
        from quadletctl.providers.fetch import FetchError

        self.calls.append((url, destination))
        if url not in self.responses:
            raise FetchError(f"GET {url} failed: HTTP 404 Not Found")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(self.responses[url], encoding="utf-8")
        return destination


@pytest.fixture
def fake_fetcher_factory() -> type[FakeFetcher]:
    """Expose the fake fetcher class to tests."""
    return FakeFetcher
