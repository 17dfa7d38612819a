import re

HAR_VERSION = '1.2'
HAR_CREATOR_NAME = 'fetch-har'

# Reserved header carrying the correlation token. Internal, may change.
HAR_REQUEST_ID_HEADER = 'x-har-request-id'

DEFAULT_PAGE_ID = 'page_1'
DEFAULT_PAGE_TITLE = 'Page'

FORM_URLENCODED = 'application/x-www-form-urlencoded'

COMPRESSED_ENCODINGS = re.compile(r'^(gzip|compress|deflate|br)$')

# Floor for the `blocked` timing, in milliseconds.
MIN_BLOCKED_MS = 0.01

RESOURCE_TYPE_FETCH = 'fetch'
