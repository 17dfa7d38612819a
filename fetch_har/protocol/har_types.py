"""HAR 1.2 format type definitions.

Based on the HAR 1.2 specification: http://www.softwareishard.com/blog/har-12-spec/
These TypedDicts describe the records produced for every request issued
through an instrumented fetch.
"""

from __future__ import annotations

from typing_extensions import NotRequired, TypedDict


class HarTimings(TypedDict):
    """Timing information about a request/response round trip.

    All values are milliseconds; -1 means the phase does not apply.
    ``connect`` includes ``ssl`` for compatibility with HAR 1.1 consumers.
    """

    blocked: float
    dns: float
    connect: float
    ssl: float
    send: float
    wait: float
    receive: float


class HarCookie(TypedDict):
    """Cookie sent in a ``Cookie`` header or set by a ``Set-Cookie`` header.

    Response cookies always carry ``httpOnly`` and ``secure``; request cookies
    only have a name and value.
    """

    name: str
    value: str
    path: NotRequired[str]
    domain: NotRequired[str]
    expires: NotRequired[str]
    httpOnly: NotRequired[bool]
    secure: NotRequired[bool]


class HarHeader(TypedDict):
    """One header line. Repeated headers appear once per value."""

    name: str
    value: str


class HarQueryParam(TypedDict):
    """Query parameter, in URL order, repeats kept."""

    name: str
    value: str


class HarParam(TypedDict):
    """Posted parameter of a url-encoded form body."""

    name: str
    value: str


class HarPostData(TypedDict):
    """Posted data info. Carries either ``params`` or ``text``."""

    mimeType: str
    text: NotRequired[str]
    params: NotRequired[list[HarParam]]


class HarRequest(TypedDict):
    """Request half of an entry.

    ``bodySize`` stays -1 until the transport has written a body.
    """

    method: str
    url: str
    httpVersion: str
    cookies: list[HarCookie]
    headers: list[HarHeader]
    queryString: list[HarQueryParam]
    headersSize: int
    bodySize: int
    postData: NotRequired[HarPostData]


class HarContent(TypedDict):
    """Decoded response body.

    ``size`` is the decoded length; ``compression`` is set only for compressed
    responses whose encoded length was counted.
    """

    size: int
    mimeType: str
    compression: NotRequired[int]
    text: NotRequired[str]
    encoding: NotRequired[str]


class HarResponse(TypedDict):
    """Response half of an entry, filled in once the headers have arrived."""

    status: int
    statusText: str
    httpVersion: str
    cookies: list[HarCookie]
    headers: list[HarHeader]
    content: HarContent
    redirectURL: str
    headersSize: int
    bodySize: int


class HarCache(TypedDict):
    """Cache state. Always null, fetches are not served from a cache."""

    beforeRequest: dict | None
    afterRequest: dict | None


class HarEntry(TypedDict):
    """One physical request/response exchange. Each redirect hop gets its own."""

    startedDateTime: str
    time: float
    request: HarRequest
    response: NotRequired[HarResponse]
    cache: HarCache
    timings: HarTimings
    pageref: NotRequired[str]
    _resourceType: NotRequired[str]


class HarPageTimings(TypedDict):
    """Page load milestones. Always -1, there is no page to load."""

    onContentLoad: float
    onLoad: float


class HarPage(TypedDict):
    """Page grouping the entries that share its ``id`` as ``pageref``."""

    startedDateTime: str
    id: str
    title: str
    pageTimings: HarPageTimings


class HarCreator(TypedDict):
    """Name and version of the library that wrote the log."""

    name: str
    version: str


class HarLog(TypedDict):
    """Root of the HAR data."""

    version: str
    creator: HarCreator
    pages: list[HarPage]
    entries: list[HarEntry]


class Har(TypedDict):
    """Top-level HAR object."""

    log: HarLog
