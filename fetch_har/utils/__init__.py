from fetch_har.utils.headers import (
    get_header,
    get_header_values,
    normalize_headers,
    parse_params,
    parse_request_cookies,
    parse_response_cookies,
)

__all__ = [
    'get_header',
    'get_header_values',
    'normalize_headers',
    'parse_params',
    'parse_request_cookies',
    'parse_response_cookies',
]
