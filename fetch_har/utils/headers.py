"""Normalization of headers, cookies and url-encoded parameters into HAR lists."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import timezone
from email.utils import parsedate_to_datetime
from urllib.parse import parse_qsl

import httpx

from fetch_har.protocol.har_types import HarCookie, HarHeader, HarParam

logger = logging.getLogger(__name__)

HeaderText = str | bytes
RawHeaders = (
    httpx.Headers
    | Mapping[HeaderText, HeaderText | Sequence[HeaderText]]
    | Sequence[tuple[HeaderText, HeaderText]]
    | Sequence[HeaderText]
)


def _to_str(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode('latin-1')
    return str(value)


def normalize_headers(raw: RawHeaders) -> list[HarHeader]:
    """Convert any supported header shape into an ordered HAR header list.

    Supported shapes:

    - ``httpx.Headers``: iterated over its raw, case-preserving items.
    - A sequence of pairs: ``[(name, value), (name, value), ...]``.
    - A flat sequence with both names and values: ``[name, value, name, value, ...]``.
    - A mapping with list values: ``{name: [value, value]}``.
    - A mapping with scalar values: ``{name: value}``.

    Repeated names keep every value, in the order they were given.
    """
    if isinstance(raw, httpx.Headers):
        return [HarHeader(name=_to_str(name), value=_to_str(value)) for name, value in raw.raw]

    headers: list[HarHeader] = []
    if isinstance(raw, Mapping):
        for name, value in raw.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            for item in values:
                headers.append(HarHeader(name=_to_str(name), value=_to_str(item)))
        return headers

    if raw and isinstance(raw[0], (list, tuple)):
        for pair in raw:
            if len(pair) != 2:
                raise ValueError(f'Header pairs must have a name and a value, got {pair!r}')
            name, value = pair
            headers.append(HarHeader(name=_to_str(name), value=_to_str(value)))
        return headers

    for index in range(0, len(raw) - 1, 2):
        headers.append(HarHeader(name=_to_str(raw[index]), value=_to_str(raw[index + 1])))
    return headers


def get_header_values(headers: list[HarHeader], name: str) -> list[str]:
    """Return every value of ``name`` in a normalized header list, matched case-insensitively."""
    wanted = name.lower()
    return [header['value'] for header in headers if header['name'].lower() == wanted]


def get_header(headers: list[HarHeader], name: str) -> str | None:
    """Return the first value of ``name``, or None when the header is absent."""
    values = get_header_values(headers, name)
    return values[0] if values else None


def parse_request_cookies(headers: list[HarHeader]) -> list[HarCookie]:
    """Parse every ``Cookie`` header into individual name/value pairs."""
    cookies: list[HarCookie] = []
    for header_value in get_header_values(headers, 'cookie'):
        for raw_pair in header_value.split(';'):
            stripped = raw_pair.strip()
            if '=' not in stripped:
                continue
            name, value = stripped.split('=', 1)
            name = name.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            if name:
                cookies.append(HarCookie(name=name, value=value))
    return cookies


def parse_response_cookies(headers: list[HarHeader]) -> list[HarCookie]:
    """Parse every ``Set-Cookie`` header into a full HAR cookie record.

    Each header value describes exactly one cookie. Attributes are matched
    case-insensitively and unknown ones (``SameSite``, ``Partitioned``, ...)
    are ignored. A value without a cookie name is skipped; the remaining ones
    are still returned.
    """
    cookies: list[HarCookie] = []
    for header_value in get_header_values(headers, 'set-cookie'):
        cookie = _parse_set_cookie(header_value)
        if cookie is not None:
            cookies.append(cookie)
    return cookies


def _parse_set_cookie(header_value: str) -> HarCookie | None:
    name_value, *attrs = header_value.split(';')
    if '=' not in name_value:
        logger.debug('Skipping Set-Cookie value without a cookie: %r', header_value)
        return None
    name, value = name_value.split('=', 1)
    name = name.strip()
    if not name:
        logger.debug('Skipping Set-Cookie value without a cookie name: %r', header_value)
        return None

    cookie = HarCookie(name=name, value=value.strip(), httpOnly=False, secure=False)
    for raw_attr in attrs:
        attr_name, _, attr_value = raw_attr.partition('=')
        attr_name = attr_name.strip().lower()
        attr_value = attr_value.strip()
        if attr_name == 'httponly':
            cookie['httpOnly'] = True
        elif attr_name == 'secure':
            cookie['secure'] = True
        elif attr_name == 'path' and attr_value:
            cookie['path'] = attr_value
        elif attr_name == 'domain' and attr_value:
            cookie['domain'] = attr_value
        elif attr_name == 'expires' and attr_value:
            expires = _expires_to_iso(attr_value)
            if expires:
                cookie['expires'] = expires
    return cookie


def _expires_to_iso(expires: str) -> str | None:
    try:
        moment = parsedate_to_datetime(expires)
    except (TypeError, ValueError):
        logger.debug('Ignoring unparseable cookie expiry: %r', expires)
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_params(text: str) -> list[HarParam]:
    """Parse a url-encoded string into ordered name/value pairs, keeping blanks and repeats."""
    pairs = parse_qsl(text, keep_blank_values=True)
    return [HarParam(name=name, value=value) for name, value in pairs]
