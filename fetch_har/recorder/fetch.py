"""Fetch wrapper that records a HAR entry for every request it issues.

``with_har`` wraps any ``async (url, **options) -> httpx.Response`` callable.
Each call gets a correlation token sent as a request header; the
instrumented transport files the physical requests under that token, and
once the response body has been read the entries of the call (one per
redirect hop) are finalized and emitted in order.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields, replace
from typing import Any, Awaitable, Callable

import httpx

from fetch_har.constants import DEFAULT_PAGE_ID, HAR_REQUEST_ID_HEADER
from fetch_har.protocol.har_types import Har, HarEntry
from fetch_har.recorder.entries import EntryState, finalize_entry, flatten_entries
from fetch_har.recorder.har_log import HarCapture
from fetch_har.recorder.pending import PendingEntryTable
from fetch_har.recorder.transport import TransportFactory, TransportSelector

logger = logging.getLogger(__name__)

FetchFunction = Callable[..., Awaitable[httpx.Response]]

HAR_ENTRY_EXTENSION = 'har_entry'

_STALE_BODY_HEADERS = (b'content-encoding', b'content-length')


@dataclass(frozen=True)
class HarOptions:
    """Recording options. Set as defaults on the fetcher, overridable per call.

    Attributes:
        har: HAR document whose ``log.entries`` receives the entries, or
            False to skip recording for the call entirely.
        page_ref: Page id stamped on every entry of the call.
        on_entry: Called once per finished entry, redirect hops first.
        transport: Transport to dispatch through, instrumented on use.
        transport_factory: Called with the URL to produce a transport;
            returning None falls back to the shared default.
        response_class: Response type to rebuild the returned response as.
    """

    har: Har | bool | None = None
    page_ref: str = DEFAULT_PAGE_ID
    on_entry: Callable[[HarEntry], Any] | None = None
    transport: httpx.AsyncBaseTransport | None = None
    transport_factory: TransportFactory | None = None
    response_class: type[httpx.Response] | None = None


_OPTION_NAMES = frozenset(f.name for f in fields(HarOptions))


async def httpx_fetch(
    url: httpx.URL | str,
    *,
    method: str = 'GET',
    transport: httpx.AsyncBaseTransport | None = None,
    follow_redirects: bool = True,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request through an ``httpx.AsyncClient`` bound to ``transport``.

    The response comes back unread; the caller reads and closes it. The
    client is not closed because closing it would close the shared transport.

    Args:
        url: Target URL.
        method: HTTP method.
        transport: Transport the client dispatches through.
        follow_redirects: Whether redirects are followed.
        **kwargs: Passed to ``AsyncClient.build_request`` (``headers``,
            ``content``, ``data``, ``json``, ``params``, ``cookies``...).
    """
    client = httpx.AsyncClient(transport=transport, follow_redirects=follow_redirects)
    request = client.build_request(method, url, **kwargs)
    return await client.send(request, stream=True)


def get_har_entry(response: httpx.Response) -> HarEntry | None:
    """Return the entry recorded for ``response``, if it came through a HAR fetcher."""
    return response.extensions.get(HAR_ENTRY_EXTENSION)


class HarFetcher:
    """Callable replacement for a fetch function that records HAR entries.

    Each fetcher owns its pending-entry table and its shared default
    transports, so independent fetchers never see each other's requests.
    """

    def __init__(
        self,
        fetch: FetchFunction | None = None,
        pending: PendingEntryTable | None = None,
        options: HarOptions | None = None,
    ):
        self._fetch = fetch or httpx_fetch
        self.pending = pending if pending is not None else PendingEntryTable()
        self.options = options or HarOptions()
        self.transports = TransportSelector(self.pending)
        self._captures: list[HarCapture] = []

    async def __call__(self, url: httpx.URL | str, **kwargs: Any) -> httpx.Response:
        options = self._resolve_options(kwargs)
        if options.har is False:
            logger.debug('HAR recording disabled for %s', url)
            transport = options.transport
            if transport is None and options.transport_factory is not None:
                transport = options.transport_factory(httpx.URL(url))
            if transport is None:
                # Untraced requests pass straight through the shared transport.
                transport = self.transports.default_for(url)
            response = await self._fetch(url, transport=transport, **kwargs)
            await _read_body(response)
            return response

        token = uuid.uuid4().hex
        headers = httpx.Headers(kwargs.pop('headers', None))
        headers[HAR_REQUEST_ID_HEADER] = token
        transport = self.transports.select(
            httpx.URL(url), options.transport, options.transport_factory
        )

        with self.pending.reserve(token):
            response = await self._fetch(url, headers=headers, transport=transport, **kwargs)
            await _read_body(response)
            state = self.pending.pop(token)

        if state is None:
            logger.debug('No HAR entry recorded for %s', url)
            return response
        return self._finalize(state, response, options)

    @asynccontextmanager
    async def record(
        self, page_info: dict[str, Any] | None = None
    ) -> AsyncIterator[HarCapture]:
        """Collect every entry emitted while the block runs.

        Args:
            page_info: Fields overriding the default page of the exported log.
        """
        capture = HarCapture(page_info)
        self._captures.append(capture)
        try:
            yield capture
        finally:
            self._captures.remove(capture)

    async def aclose(self) -> None:
        await self.transports.aclose()

    async def __aenter__(self) -> HarFetcher:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _resolve_options(self, kwargs: dict[str, Any]) -> HarOptions:
        overrides = {name: kwargs.pop(name) for name in list(kwargs) if name in _OPTION_NAMES}
        return replace(self.options, **overrides) if overrides else self.options

    def _finalize(
        self, state: EntryState, response: httpx.Response, options: HarOptions
    ) -> httpx.Response:
        finalize_entry(state)
        entries = flatten_entries(state)
        for entry in entries:
            entry['pageref'] = options.page_ref
        final = entries[-1]

        if options.response_class is not None:
            response = _rebuild_response(response, options.response_class)
        if state.superseded:
            logger.debug(
                'Last hop of %s %s was not traced, response left without an entry',
                response.request.method,
                response.request.url,
            )
        else:
            response.extensions[HAR_ENTRY_EXTENSION] = final
        logger.debug(
            'HAR entry finished: %s %s (%d hop(s))',
            final['request']['method'],
            final['request']['url'],
            len(entries),
        )

        if isinstance(options.har, dict):
            options.har['log']['entries'].extend(entries)
        for capture in self._captures:
            capture.add(entries)
        if options.on_entry is not None:
            for entry in entries:
                options.on_entry(entry)
        return response


async def _read_body(response: httpx.Response) -> None:
    try:
        await response.aread()
    except BaseException:
        await response.aclose()
        raise


def _rebuild_response(
    response: httpx.Response, response_class: type[httpx.Response]
) -> httpx.Response:
    # The body is already decoded, so the encoding and length headers no longer apply.
    headers = [
        (name, value)
        for name, value in response.headers.raw
        if name.lower() not in _STALE_BODY_HEADERS
    ]
    rebuilt = response_class(
        status_code=response.status_code,
        headers=headers,
        content=response.content,
        request=response.request,
        extensions=dict(response.extensions),
    )
    rebuilt.history = list(response.history)
    return rebuilt


def with_har(
    fetch: FetchFunction | None = None,
    *,
    pending: PendingEntryTable | None = None,
    **defaults: Any,
) -> HarFetcher:
    """Wrap ``fetch`` (``httpx_fetch`` by default) so that its requests are recorded.

    Args:
        fetch: Fetch function to wrap. It must accept ``headers`` and
            ``transport`` keyword arguments and return an ``httpx.Response``.
        pending: Pending-entry table to use, for sharing or inspection.
        **defaults: Default ``HarOptions`` fields for every call.

    Example:
        >>> har = create_har_log()
        >>> fetch = with_har(har=har)
        >>> response = await fetch('https://example.com/')
        >>> har['log']['entries'][0]['response']['status']
        200
    """
    return HarFetcher(fetch, pending=pending, options=HarOptions(**defaults))
