"""Tests for fetch_har.recorder.transport module."""

import httpx
import pytest
from unittest.mock import AsyncMock, Mock, patch

from fetch_har.constants import HAR_REQUEST_ID_HEADER
from fetch_har.recorder.body import RequestBodyObserver, ResponseBodyObserver
from fetch_har.recorder.pending import PendingEntryTable
from fetch_har.recorder.timings import Milestone, TraceObserver
from fetch_har.recorder.transport import (
    HarTransport,
    TransportSelector,
    instrument_transport,
)


def _make_request(token=None, method='GET', url='http://example.com/', **kwargs):
    headers = dict(kwargs.pop('headers', {}))
    if token is not None:
        headers[HAR_REQUEST_ID_HEADER] = token
    return httpx.Request(method, url, headers=headers, **kwargs)


def _ok(request):
    return httpx.Response(200, content=b'ok')


@pytest.fixture
def table():
    return PendingEntryTable()


class TestHarTransport:
    """Test per-dispatch instrumentation."""

    @pytest.mark.asyncio
    async def test_request_without_token_passes_through(self, table):
        transport = HarTransport(httpx.MockTransport(_ok), table)
        request = _make_request()
        response = await transport.handle_async_request(request)
        assert response.status_code == 200
        assert 'trace' not in request.extensions
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_unreserved_token_passes_through(self, table):
        transport = HarTransport(httpx.MockTransport(_ok), table)
        request = _make_request('stranger')
        await transport.handle_async_request(request)
        assert not isinstance(request.stream, RequestBodyObserver)
        assert 'stranger' not in table

    @pytest.mark.asyncio
    async def test_reserved_token_gets_an_entry(self, table):
        transport = HarTransport(httpx.MockTransport(_ok), table)
        request = _make_request('t1', url='http://example.com/path?x=1')
        with table.reserve('t1'):
            response = await transport.handle_async_request(request)
            state = table.get('t1')
            assert state is not None
            assert state.entry['request']['url'] == 'http://example.com/path?x=1'
            assert state.entry['response']['status'] == 200
            assert isinstance(request.extensions['trace'], TraceObserver)
            assert isinstance(request.stream, RequestBodyObserver)
            assert isinstance(response.stream, ResponseBodyObserver)

    @pytest.mark.asyncio
    async def test_body_written_by_transport_is_recorded(self, table):
        async def handler(request):
            async for _ in request.stream:
                pass
            return httpx.Response(201)

        transport = HarTransport(httpx.MockTransport(handler), table)
        request = _make_request('t1', method='POST', json={'key': 'value'})
        with table.reserve('t1'):
            await transport.handle_async_request(request)
            har_request = table.get('t1').entry['request']
        assert har_request['bodySize'] == len(request.content)
        assert har_request['postData']['mimeType'] == 'application/json'
        assert har_request['postData']['text'] == request.content.decode()

    @pytest.mark.asyncio
    async def test_instrumentation_failure_keeps_request_going(self, table):
        transport = HarTransport(httpx.MockTransport(_ok), table)
        with table.reserve('t1'):
            with patch(
                'fetch_har.recorder.transport.build_entry', side_effect=RuntimeError('boom')
            ):
                response = await transport.handle_async_request(_make_request('t1'))
            assert response.status_code == 200
            assert 't1' not in table

    @pytest.mark.asyncio
    async def test_failure_on_later_hop_supersedes_live_entry(self, table):
        transport = HarTransport(httpx.MockTransport(_ok), table)
        with table.reserve('t1'):
            first = await transport.handle_async_request(_make_request('t1'))
            await first.aread()
            with patch(
                'fetch_har.recorder.transport.build_entry', side_effect=RuntimeError('boom')
            ):
                await transport.handle_async_request(
                    _make_request('t1', url='http://example.com/next')
                )
            state = table.get('t1')

        assert state.superseded
        assert state.finalized
        assert state.entry['request']['url'] == 'http://example.com/'
        assert state.entry['response']['status'] == 200

    @pytest.mark.asyncio
    async def test_caller_trace_is_still_called(self, table):
        user_trace = AsyncMock()

        async def handler(request):
            await request.extensions['trace']('connection.connect_tcp.complete', {})
            return httpx.Response(200)

        transport = HarTransport(httpx.MockTransport(handler), table)
        request = _make_request('t1', extensions={'trace': user_trace})
        with table.reserve('t1'):
            await transport.handle_async_request(request)
            state = table.get('t1')
        user_trace.assert_awaited_once_with('connection.connect_tcp.complete', {})
        assert Milestone.CONNECTED in state.timestamps

    @pytest.mark.asyncio
    async def test_response_bytes_are_counted(self, table):
        def handler(request):
            return httpx.Response(200, stream=httpx.ByteStream(b'abcdef'))

        transport = HarTransport(httpx.MockTransport(handler), table)
        with table.reserve('t1'):
            response = await transport.handle_async_request(_make_request('t1'))
            await response.aread()
            state = table.get('t1')
        assert state.raw_body_size == 6
        assert Milestone.BODY_RECEIVED in state.timestamps

    @pytest.mark.asyncio
    async def test_second_dispatch_links_and_finalizes_parent(self, table):
        def handler(request):
            if request.url.path == '/old':
                return httpx.Response(302, headers={'Location': '/new'})
            return httpx.Response(200)

        transport = HarTransport(httpx.MockTransport(handler), table)
        with table.reserve('t1'):
            await transport.handle_async_request(_make_request('t1', url='http://example.com/old'))
            first = table.get('t1')
            await transport.handle_async_request(_make_request('t1', url='http://example.com/new'))
            second = table.get('t1')
        assert second.parent is first
        assert first.finalized is True
        assert first.entry['response']['redirectURL'] == '/new'
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_aclose_is_forwarded(self, table):
        inner = Mock(spec=httpx.AsyncBaseTransport)
        inner.aclose = AsyncMock()
        await HarTransport(inner, table).aclose()
        inner.aclose.assert_awaited_once()


class TestInstrumentTransport:
    """Test wrapping idempotence."""

    def test_same_table_is_not_wrapped_twice(self, table):
        wrapped = instrument_transport(httpx.MockTransport(_ok), table)
        assert instrument_transport(wrapped, table) is wrapped

    def test_other_table_gets_outer_layer(self, table):
        inner = instrument_transport(httpx.MockTransport(_ok), PendingEntryTable())
        outer = instrument_transport(inner, table)
        assert outer is not inner
        assert outer.transport is inner
        assert outer.pending is table


class TestTransportSelector:
    """Test transport selection per call."""

    def _make_selector(self, table):
        return TransportSelector(table, transport_class=lambda: httpx.MockTransport(_ok))

    def test_defaults_are_shared_per_scheme(self, table):
        selector = self._make_selector(table)
        http_a = selector.select(httpx.URL('http://a.example/'))
        http_b = selector.select(httpx.URL('http://b.example/'))
        https = selector.select(httpx.URL('https://a.example/'))
        assert http_a is http_b
        assert https is not http_a
        assert isinstance(https, HarTransport)

    def test_custom_transport_is_wrapped(self, table):
        custom = httpx.MockTransport(_ok)
        selected = self._make_selector(table).select(httpx.URL('http://a/'), transport=custom)
        assert isinstance(selected, HarTransport)
        assert selected.transport is custom

    def test_factory_result_is_wrapped(self, table):
        produced = httpx.MockTransport(_ok)
        factory = Mock(return_value=produced)
        url = httpx.URL('https://a.example/')
        selected = self._make_selector(table).select(url, transport_factory=factory)
        factory.assert_called_once_with(url)
        assert selected.transport is produced

    def test_factory_returning_none_uses_default(self, table):
        selector = self._make_selector(table)
        url = httpx.URL('https://a.example/')
        selected = selector.select(url, transport_factory=lambda _: None)
        assert selected is selector.default_for(url)

    @pytest.mark.asyncio
    async def test_aclose_closes_defaults(self, table):
        inner = Mock(spec=httpx.AsyncBaseTransport)
        inner.aclose = AsyncMock()
        selector = TransportSelector(table, transport_class=lambda: inner)
        selector.default_for('http://a.example/')
        await selector.aclose()
        inner.aclose.assert_awaited_once()
        assert selector.default_for('http://a.example/').transport is inner
