from fetch_har.recorder import (
    HarCapture,
    HarFetcher,
    HarOptions,
    HarTransport,
    PendingEntryTable,
    create_har_log,
    get_har_entry,
    httpx_fetch,
    instrument_transport,
    with_har,
)

__all__ = [
    'HarCapture',
    'HarFetcher',
    'HarOptions',
    'HarTransport',
    'PendingEntryTable',
    'create_har_log',
    'get_har_entry',
    'httpx_fetch',
    'instrument_transport',
    'with_har',
]
