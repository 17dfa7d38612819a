"""Correlation table linking transport-level entries to the fetch call that issued them."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fetch_har.recorder.entries import EntryState

logger = logging.getLogger(__name__)


class PendingEntryTable:
    """Maps a correlation token to the entry of its most recent physical request.

    A token must be reserved by the fetch call before the transport records
    anything under it. Redirects reuse the token: pushing a new entry evicts
    the current one and links it as the new entry's parent, so a token never
    owns two live entries. All mutations are synchronous and must happen on
    the event loop thread.
    """

    def __init__(self) -> None:
        self._entries: dict[str, EntryState] = {}
        self._reserved: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return token in self._entries

    def is_reserved(self, token: str) -> bool:
        return token in self._reserved

    @contextmanager
    def reserve(self, token: str) -> Iterator[None]:
        """Accept entries for ``token`` while the block runs; drop whatever is left on exit."""
        self._reserved.add(token)
        try:
            yield
        finally:
            self._reserved.discard(token)
            if self._entries.pop(token, None) is not None:
                logger.debug('Discarded pending HAR entry for %s', token)

    def push(self, token: str, state: EntryState) -> EntryState | None:
        """Make ``state`` the live entry of ``token``, returning the evicted parent if any."""
        parent = self._entries.pop(token, None)
        state.parent = parent
        self._entries[token] = state
        if parent is not None:
            logger.debug('Linked redirect hop for %s to its parent entry', token)
        return parent

    def get(self, token: str) -> EntryState | None:
        return self._entries.get(token)

    def pop(self, token: str) -> EntryState | None:
        return self._entries.pop(token, None)
