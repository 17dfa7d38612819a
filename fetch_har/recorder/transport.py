"""Transport decorator that turns every traced dispatch into a HAR entry."""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable

import httpx

from fetch_har.constants import HAR_REQUEST_ID_HEADER
from fetch_har.recorder.body import RequestBodyObserver, ResponseBodyObserver
from fetch_har.recorder.entries import (
    EntryState,
    build_entry,
    finalize_entry,
    record_request_body,
    record_response,
    record_response_data,
)
from fetch_har.recorder.pending import PendingEntryTable
from fetch_har.recorder.timings import Milestone, TraceObserver

logger = logging.getLogger(__name__)

TransportFactory = Callable[[httpx.URL], httpx.AsyncBaseTransport | None]


class HarTransport(httpx.AsyncBaseTransport):
    """Wraps another async transport and records requests carrying a correlation token.

    Before delegating, a traced request gets a provisional entry in the
    pending table, a trace observer for connection milestones and an
    observer on its body stream; the response stream is observed on the way
    back. Requests without a reserved token go straight to the wrapped
    transport. Any failure while instrumenting drops tracing for that
    request only.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport, pending: PendingEntryTable):
        self.transport = transport
        self.pending = pending

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get(HAR_REQUEST_ID_HEADER)
        if not token or not self.pending.is_reserved(token):
            return await self.transport.handle_async_request(request)

        state = self._begin(token, request)
        response = await self.transport.handle_async_request(request)
        if state is not None:
            self._observe_response(state, response)
        return response

    async def aclose(self) -> None:
        await self.transport.aclose()

    def _begin(self, token: str, request: httpx.Request) -> EntryState | None:
        try:
            state = build_entry(request)
            observer = TraceObserver.chain(state.timestamps, request.extensions.get('trace'))
            body = RequestBodyObserver.wrap(request.stream, partial(record_request_body, state))
        except Exception:
            logger.warning(
                'Could not instrument %s %s, HAR tracing dropped',
                request.method,
                request.url,
                exc_info=True,
            )
            self._supersede(token)
            return None

        # Redirect requests share the extensions dict of the hop they came from.
        request.extensions = {**request.extensions, 'trace': observer}
        request.stream = body

        parent = self.pending.push(token, state)
        if parent is not None:
            finalize_entry(parent)
        logger.debug('HAR entry started: %s %s', request.method, request.url)
        return state

    def _supersede(self, token: str) -> None:
        # The live entry belongs to an earlier hop and no longer describes the final response.
        live = self.pending.get(token)
        if live is not None and not live.superseded:
            finalize_entry(live)
            live.superseded = True

    def _observe_response(self, state: EntryState, response: httpx.Response) -> None:
        try:
            record_response(state, response)
            response.stream = ResponseBodyObserver(
                response.stream,  # type: ignore[arg-type]
                on_data=partial(record_response_data, state),
                on_complete=partial(state.timestamps.mark, Milestone.BODY_RECEIVED),
            )
        except Exception:
            logger.warning(
                'Could not record response %s for HAR entry', response.status_code, exc_info=True
            )


def instrument_transport(
    transport: httpx.AsyncBaseTransport, pending: PendingEntryTable
) -> HarTransport:
    """Wrap ``transport`` unless it already records into ``pending``, in which case it is returned.

    A ``HarTransport`` bound to another table gets an outer layer; the inner
    one never sees a token it reserved and passes everything through.
    """
    if isinstance(transport, HarTransport) and transport.pending is pending:
        return transport
    return HarTransport(transport, pending)


class TransportSelector:
    """Picks the instrumented transport for each fetch call.

    Two default transports, one per scheme, are created lazily and shared by
    every call of the owning fetcher. A caller-supplied transport is wrapped
    instead; a factory is asked per call and falls back to the default when
    it returns None.
    """

    def __init__(
        self,
        pending: PendingEntryTable,
        transport_class: Callable[[], httpx.AsyncBaseTransport] = httpx.AsyncHTTPTransport,
    ):
        self._pending = pending
        self._transport_class = transport_class
        self._defaults: dict[str, HarTransport] = {}

    def select(
        self,
        url: httpx.URL,
        transport: httpx.AsyncBaseTransport | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> HarTransport:
        if transport is not None:
            return instrument_transport(transport, self._pending)
        if transport_factory is not None:
            produced = transport_factory(url)
            if produced is not None:
                return instrument_transport(produced, self._pending)
        return self.default_for(url)

    def default_for(self, url: httpx.URL | str) -> HarTransport:
        scheme = 'http' if httpx.URL(url).scheme == 'http' else 'https'
        transport = self._defaults.get(scheme)
        if transport is None:
            transport = HarTransport(self._transport_class(), self._pending)
            self._defaults[scheme] = transport
            logger.debug('Created shared %s transport', scheme)
        return transport

    async def aclose(self) -> None:
        for transport in self._defaults.values():
            await transport.aclose()
        self._defaults.clear()
