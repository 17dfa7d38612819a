"""Assembly of HAR entries from httpx requests and responses."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from fetch_har.constants import COMPRESSED_ENCODINGS, FORM_URLENCODED, RESOURCE_TYPE_FETCH
from fetch_har.protocol.har_types import (
    HarCache,
    HarContent,
    HarEntry,
    HarPostData,
    HarQueryParam,
    HarRequest,
    HarResponse,
    HarTimings,
)
from fetch_har.recorder.timings import Milestone, TimestampSet, compute_timings
from fetch_har.utils.headers import (
    get_header,
    normalize_headers,
    parse_params,
    parse_request_cookies,
    parse_response_cookies,
)

logger = logging.getLogger(__name__)

_TEXTUAL_MIME_MARKERS = ('json', 'xml', 'javascript', 'x-www-form-urlencoded', 'html', 'csv')


@dataclass
class EntryState:
    """A HAR entry under construction together with what is needed to finish it.

    ``parent`` links to the entry of the previous redirect hop until the
    chain is flattened. ``superseded`` is set when a later hop of the same
    call could not be traced: the chain is still emitted, but it does not
    describe the final response.
    """

    entry: HarEntry
    timestamps: TimestampSet
    parent: EntryState | None = None
    response: httpx.Response | None = None
    compressed: bool = False
    raw_body_size: int | None = None
    finalized: bool = field(default=False, repr=False)
    superseded: bool = field(default=False, repr=False)


def build_entry(request: httpx.Request) -> EntryState:
    """Create the provisional entry for a request about to be dispatched."""
    timestamps = TimestampSet()
    headers = normalize_headers(request.headers)
    har_request = HarRequest(
        method=request.method,
        url=str(request.url),
        httpVersion='',
        cookies=parse_request_cookies(headers),
        headers=headers,
        queryString=[
            HarQueryParam(name=name, value=value)
            for name, value in request.url.params.multi_items()
        ],
        headersSize=-1,
        bodySize=-1,
    )
    entry = HarEntry(
        startedDateTime=datetime.now(tz=timezone.utc).isoformat(),
        time=0,
        request=har_request,
        cache=HarCache(beforeRequest=None, afterRequest=None),
        timings=HarTimings(blocked=-1, dns=-1, connect=-1, ssl=-1, send=0, wait=0, receive=0),
        _resourceType=RESOURCE_TYPE_FETCH,
    )
    return EntryState(entry=entry, timestamps=timestamps)


def record_request_body(state: EntryState, body: bytes | None) -> None:
    """Store the body the transport wrote. Called once the request stream is exhausted."""
    state.timestamps.mark(Milestone.REQUEST_SENT)
    if body is None:
        return

    har_request = state.entry['request']
    har_request['bodySize'] = len(body)
    mime_type = get_header(har_request['headers'], 'content-type')
    if not mime_type:
        return

    text = body.decode('utf-8', errors='replace')
    if mime_type.split(';')[0].strip().lower() == FORM_URLENCODED:
        har_request['postData'] = HarPostData(mimeType=mime_type, params=parse_params(text))
    else:
        har_request['postData'] = HarPostData(mimeType=mime_type, text=text)


def record_response(state: EntryState, response: httpx.Response) -> None:
    """Fill in the response half of the entry as soon as the headers are in."""
    state.timestamps.mark(Milestone.FIRST_RESPONSE_BYTE)
    state.response = response

    http_version = response.http_version
    state.entry['request']['httpVersion'] = http_version

    headers = normalize_headers(response.headers)
    content_encoding = response.headers.get('content-encoding', '').strip().lower()
    state.compressed = bool(COMPRESSED_ENCODINGS.match(content_encoding))

    state.entry['response'] = HarResponse(
        status=response.status_code,
        statusText=response.reason_phrase,
        httpVersion=http_version,
        cookies=parse_response_cookies(headers),
        headers=headers,
        content=HarContent(size=-1, mimeType=response.headers.get('content-type', '')),
        redirectURL=response.headers.get('location', ''),
        headersSize=-1,
        bodySize=-1,
    )


def record_response_data(state: EntryState, size: int) -> None:
    """Count raw response bytes as they come off the wire."""
    state.raw_body_size = (state.raw_body_size or 0) + size


def finalize_entry(state: EntryState) -> HarEntry:
    """Compute final timings and body sizes. Safe to call more than once."""
    if state.finalized:
        return state.entry
    state.finalized = True

    timings, total = compute_timings(state.timestamps)
    state.entry['timings'] = timings
    state.entry['time'] = total

    har_response = state.entry.get('response')
    if har_response is None:
        return state.entry

    content = _read_content(state.response)
    if content is None:
        if state.raw_body_size is not None:
            har_response['bodySize'] = state.raw_body_size
        return state.entry

    har_content = har_response['content']
    har_content['size'] = len(content)
    if state.response is not None and content:
        if _is_textual(har_content['mimeType']):
            har_content['text'] = state.response.text
        else:
            har_content['text'] = base64.b64encode(content).decode('ascii')
            har_content['encoding'] = 'base64'

    if state.compressed:
        if state.raw_body_size is not None:
            har_response['bodySize'] = state.raw_body_size
            har_content['compression'] = len(content) - state.raw_body_size
    else:
        har_response['bodySize'] = len(content)
    return state.entry


def flatten_entries(state: EntryState) -> list[HarEntry]:
    """Unlink the redirect chain ending at ``state`` and return it oldest first."""
    chain: list[HarEntry] = []
    node: EntryState | None = state
    while node is not None:
        parent = node.parent
        node.parent = None
        chain.append(node.entry)
        node = parent
    chain.reverse()
    return chain


def _read_content(response: httpx.Response | None) -> bytes | None:
    if response is None:
        return None
    try:
        return response.content
    except httpx.ResponseNotRead:
        return None


def _is_textual(mime_type: str) -> bool:
    mime = mime_type.split(';')[0].strip().lower()
    if not mime or mime.startswith('text/'):
        return True
    return any(marker in mime for marker in _TEXTUAL_MIME_MARKERS)
