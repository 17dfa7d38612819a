"""Request lifecycle milestones and the HAR timing breakdown derived from them.

A ``TimestampSet`` is created when a traced request is dispatched and is fed
by one-shot observers as the transport reports progress. ``compute_timings``
turns the readings into the seven HAR phases once the body has been read.
"""

from __future__ import annotations

import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable

from fetch_har.constants import MIN_BLOCKED_MS
from fetch_har.protocol.har_types import HarTimings

logger = logging.getLogger(__name__)

TraceCallback = Callable[[str, dict], Any]


class Milestone(str, Enum):
    START = 'start'
    SOCKET_ACQUIRED = 'socket_acquired'
    DNS_LOOKUP = 'dns_lookup'
    CONNECTED = 'connected'
    SECURE_CONNECTED = 'secure_connected'
    REQUEST_SENT = 'request_sent'
    FIRST_RESPONSE_BYTE = 'first_response_byte'
    BODY_RECEIVED = 'body_received'


class TimestampSet:
    """Monotonic readings, in seconds, taken at each milestone of one physical request.

    Every milestone is recorded at most once; later marks for the same
    milestone are ignored.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self._clock = clock
        self._readings: dict[Milestone, float] = {}
        self.mark(Milestone.START)

    def mark(self, milestone: Milestone, at: float | None = None) -> bool:
        """Record ``milestone`` now (or at ``at``). Returns False if it was already set."""
        if milestone in self._readings:
            return False
        self._readings[milestone] = self._clock() if at is None else at
        return True

    def fill(self, milestone: Milestone, source: Milestone) -> None:
        """Back-fill an unset milestone with the reading of ``source``."""
        if milestone not in self._readings and source in self._readings:
            self._readings[milestone] = self._readings[source]

    def get(self, milestone: Milestone) -> float | None:
        return self._readings.get(milestone)

    def __contains__(self, milestone: object) -> bool:
        return milestone in self._readings

    def __getitem__(self, milestone: Milestone) -> float:
        return self._readings[milestone]


def _duration(start: float, end: float) -> float:
    return (end - start) * 1000


def compute_timings(timestamps: TimestampSet) -> tuple[HarTimings, float]:
    """Derive the HAR timing phases and the total time, in milliseconds.

    Milestones the transport never reported are back-filled first: a skipped
    DNS lookup or connect (cached resolution, reused connection) takes the
    reading of the milestone before it. ``connect`` includes the TLS time
    while ``ssl`` is reported on its own as well.
    """
    ts = timestamps
    ts.fill(Milestone.SOCKET_ACQUIRED, Milestone.START)
    ts.fill(Milestone.DNS_LOOKUP, Milestone.SOCKET_ACQUIRED)
    ts.fill(Milestone.CONNECTED, Milestone.DNS_LOOKUP)
    ts.mark(Milestone.BODY_RECEIVED)
    ts.fill(Milestone.FIRST_RESPONSE_BYTE, Milestone.BODY_RECEIVED)
    ts.fill(Milestone.REQUEST_SENT, Milestone.FIRST_RESPONSE_BYTE)

    secure_connected = ts.get(Milestone.SECURE_CONNECTED)
    ready = secure_connected if secure_connected is not None else ts[Milestone.CONNECTED]

    timings = HarTimings(
        blocked=max(_duration(ts[Milestone.START], ts[Milestone.SOCKET_ACQUIRED]), MIN_BLOCKED_MS),
        dns=_duration(ts[Milestone.SOCKET_ACQUIRED], ts[Milestone.DNS_LOOKUP]),
        connect=_duration(ts[Milestone.DNS_LOOKUP], ready),
        ssl=-1,
        send=_duration(ready, ts[Milestone.REQUEST_SENT]),
        # A response can be observed before the request body is reported as sent.
        wait=max(_duration(ts[Milestone.REQUEST_SENT], ts[Milestone.FIRST_RESPONSE_BYTE]), 0),
        receive=_duration(ts[Milestone.FIRST_RESPONSE_BYTE], ts[Milestone.BODY_RECEIVED]),
    )
    if secure_connected is not None:
        timings['ssl'] = _duration(ts[Milestone.CONNECTED], secure_connected)

    total = _duration(ts[Milestone.START], ts[Milestone.BODY_RECEIVED])
    return timings, total


_TRACE_MILESTONES: dict[str, Milestone] = {
    'connection.connect_tcp.complete': Milestone.CONNECTED,
    'connection.connect_unix_socket.complete': Milestone.CONNECTED,
    'connection.start_tls.complete': Milestone.SECURE_CONNECTED,
    'http11.send_request_body.complete': Milestone.REQUEST_SENT,
    'http2.send_request_body.complete': Milestone.REQUEST_SENT,
    'http11.receive_response_headers.complete': Milestone.FIRST_RESPONSE_BYTE,
    'http2.receive_response_headers.complete': Milestone.FIRST_RESPONSE_BYTE,
}


class TraceObserver:
    """httpcore ``trace`` extension that records milestones into a ``TimestampSet``.

    The first event of any kind means the pool has handed the request a
    connection (new or reused). Each event mapping is dropped once it fired,
    so later events on the same connection are not observed twice. A trace
    callback the caller already installed keeps receiving every event.
    """

    def __init__(self, timestamps: TimestampSet, downstream: TraceCallback | None = None):
        self.timestamps = timestamps
        self.downstream = downstream
        self._pending = dict(_TRACE_MILESTONES)
        self._socket_acquired = False

    @classmethod
    def chain(
        cls, timestamps: TimestampSet, existing: TraceCallback | None
    ) -> TraceObserver:
        """Build an observer in front of ``existing``, skipping observers of earlier hops."""
        while isinstance(existing, TraceObserver):
            existing = existing.downstream
        return cls(timestamps, existing)

    async def __call__(self, event_name: str, info: dict) -> None:
        if not self._socket_acquired:
            self._socket_acquired = True
            self.timestamps.mark(Milestone.SOCKET_ACQUIRED)

        milestone = self._pending.pop(event_name, None)
        if milestone is not None:
            self.timestamps.mark(milestone)
            logger.debug('Trace milestone %s from %s', milestone.value, event_name)

        if self.downstream is not None:
            result = self.downstream(event_name, info)
            if inspect.isawaitable(result):
                await result
