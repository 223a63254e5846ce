"""Tests for the URL fetch provider."""
from __future__ import annotations

import io
import urllib.error
from pathlib import Path

import pytest

from quadletctl.providers import fetch as fetch_module
from quadletctl.providers.fetch import FetchError, UrlFetcher, is_remote


class FakeResponse(io.BytesIO):
    """Context-manager byte stream mimicking ``urlopen`` responses."""

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@pytest.mark.parametrize(
    ("locator", "expected"),
    [
        ("https://example.com/a.container", True),
        ("http://example.com/a.container", True),
        ("ftp://example.com/a.container", False),
        ("./units/a.container", False),
        ("/abs/a.container", False),
    ],
)
def test_is_remote(locator: str, expected: bool) -> None:
    assert is_remote(locator) is expected


def test_fetch_writes_body_and_sends_user_agent(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    seen: dict[str, object] = {}

    def fake_urlopen(request: object, timeout: float | None = None) -> FakeResponse:
        seen["url"] = request.full_url  # type: ignore[attr-defined]
        seen["agent"] = request.get_header("User-agent")  # type: ignore[attr-defined]
        seen["timeout"] = timeout
        return FakeResponse(b"[Container]\nImage=x\n")

    monkeypatch.setattr(fetch_module.urllib.request, "urlopen", fake_urlopen)
    destination = tmp_path / "work" / "01_web.container"

    result = UrlFetcher(timeout=5).fetch("https://example.com/web.container", destination)

    assert result == destination
    assert destination.read_bytes() == b"[Container]\nImage=x\n"
    assert seen["url"] == "https://example.com/web.container"
    assert str(seen["agent"]).startswith("quadletctl/")
    assert seen["timeout"] == 5
    assert [p.name for p in destination.parent.iterdir()] == ["01_web.container"]


def test_http_error_leaves_no_partial_file(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    def fake_urlopen(request: object, timeout: float | None = None) -> FakeResponse:
        raise urllib.error.HTTPError(
            "https://example.com/missing", 404, "Not Found", {}, None  # type: ignore[arg-type]
        )

    monkeypatch.setattr(fetch_module.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(FetchError, match="HTTP 404"):
        UrlFetcher().fetch("https://example.com/missing", tmp_path / "missing")

    assert list(tmp_path.iterdir()) == []


def test_url_error_is_wrapped(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_urlopen(request: object, timeout: float | None = None) -> FakeResponse:
        raise urllib.error.URLError("Name or service not known")

    monkeypatch.setattr(fetch_module.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(FetchError, match="Name or service not known"):
        UrlFetcher().fetch("https://nowhere.invalid/x", tmp_path / "x")
