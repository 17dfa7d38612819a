"""
Recording of HAR entries for requests issued through an instrumented fetch.
"""

from .fetch import HarFetcher, HarOptions, get_har_entry, httpx_fetch, with_har
from .har_log import HarCapture, create_har_log, create_page
from .pending import PendingEntryTable
from .transport import HarTransport, TransportSelector, instrument_transport

__all__ = [
    'HarCapture',
    'HarFetcher',
    'HarOptions',
    'HarTransport',
    'PendingEntryTable',
    'TransportSelector',
    'create_har_log',
    'create_page',
    'get_har_entry',
    'httpx_fetch',
    'instrument_transport',
    'with_har',
]
