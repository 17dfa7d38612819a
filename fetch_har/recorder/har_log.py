"""HAR log documents and the recording object handed out by ``HarFetcher.record()``."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from importlib.metadata import version as _pkg_version
from pathlib import Path
from typing import Any

import aiofiles

from fetch_har.constants import DEFAULT_PAGE_ID, DEFAULT_PAGE_TITLE, HAR_CREATOR_NAME, HAR_VERSION
from fetch_har.protocol.har_types import (
    Har,
    HarCreator,
    HarEntry,
    HarLog,
    HarPage,
    HarPageTimings,
)

logger = logging.getLogger(__name__)


def _get_package_version() -> str:
    """Get the installed fetch-har version."""
    try:
        return _pkg_version(HAR_CREATOR_NAME)
    except Exception:
        return 'unknown'


def create_page(page_info: dict[str, Any] | None = None) -> HarPage:
    """Build a page record; ``page_info`` overrides any of the defaults."""
    page = HarPage(
        startedDateTime=datetime.now(tz=timezone.utc).isoformat(),
        id=DEFAULT_PAGE_ID,
        title=DEFAULT_PAGE_TITLE,
        pageTimings=HarPageTimings(onContentLoad=-1, onLoad=-1),
    )
    if page_info:
        page.update(page_info)  # type: ignore[typeddict-item]
    return page


def create_har_log(
    entries: list[HarEntry] | None = None,
    page_info: dict[str, Any] | None = None,
) -> Har:
    """Create a HAR 1.2 document with a single page, ready to pass as ``har=``.

    Args:
        entries: Entries to start with. The list is used as is, not copied.
        page_info: Fields overriding the default page (``id``, ``title``...).
    """
    return Har(
        log=HarLog(
            version=HAR_VERSION,
            creator=HarCreator(name=HAR_CREATOR_NAME, version=_get_package_version()),
            pages=[create_page(page_info)],
            entries=entries if entries is not None else [],
        )
    )


class HarCapture:
    """User-facing object returned by the ``HarFetcher.record()`` context manager.

    Collects every entry the fetcher emits while the context is open and
    exports them as a HAR 1.2 document.
    """

    def __init__(self, page_info: dict[str, Any] | None = None):
        self._page_info = page_info
        self._entries: list[HarEntry] = []

    def add(self, entries: list[HarEntry]) -> None:
        self._entries.extend(entries)

    @property
    def entries(self) -> list[HarEntry]:
        """Return a sorted copy of the recorded HAR entries."""
        return sorted(self._entries, key=lambda e: e['startedDateTime'])

    def to_dict(self) -> Har:
        """Build a full HAR 1.2 dictionary from the recorded entries.

        Returns:
            A complete HAR 1.2 dict ready for JSON serialization.
        """
        return create_har_log(self.entries, self._page_info)

    def save(self, path: str | Path) -> None:
        """Save the recording as a HAR 1.2 JSON file.

        Args:
            path: File path to write the HAR file to.
        """
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info('HAR recording saved to %s (%d entries)', path, len(self._entries))

    async def asave(self, path: str | Path) -> None:
        """Save the recording without blocking the event loop."""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(file_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(self.to_dict(), indent=2, ensure_ascii=False))
        logger.info('HAR recording saved to %s (%d entries)', path, len(self._entries))
