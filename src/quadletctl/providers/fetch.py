"""HTTP(S) fetch provider used for remote manifests and unit files."""
from __future__ import annotations

import os
import shutil
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from .. import __version__

REMOTE_SCHEMES = ("http://", "https://")


class FetchError(RuntimeError):
    """Raised when a remote resource cannot be downloaded."""


def is_remote(locator: str) -> bool:
    """Return True when *locator* is an http(s) URL."""
    return locator.startswith(REMOTE_SCHEMES)


@dataclass(slots=True)
class UrlFetcher:
    """Download URLs to local files."""

    timeout: float | None = 30.0
    user_agent: str = f"quadletctl/{__version__}"

    def fetch(self, url: str, destination: Path) -> Path:
        """Download *url* into *destination* and return the path.

        The body is streamed into a sibling temporary file which is renamed
        into place once complete, so a failed download never leaves a partial
        file at *destination*.
        """
        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(destination.parent), prefix=f".{destination.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                with urllib.request.urlopen(request, timeout=self.timeout) as resp:  # noqa: S310
                    shutil.copyfileobj(resp, handle)
            os.replace(tmp_path, destination)
        except urllib.error.HTTPError as exc:
            raise FetchError(f"GET {url} failed: HTTP {exc.code} {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise FetchError(f"GET {url} failed: {exc.reason}") from exc
        except (OSError, TimeoutError) as exc:
            raise FetchError(f"GET {url} failed: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
        return destination


__all__ = ["FetchError", "REMOTE_SCHEMES", "UrlFetcher", "is_remote"]
