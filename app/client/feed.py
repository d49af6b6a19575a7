# app/client/feed.py
"""
Live feed subscription over server-sent events.

The AA-API pushes typed events (balance updates, fills, settlements, ...) on
`/aa/v1/updates`. Delivery is best effort: events may be missed whenever the
stream drops, so consumers reconcile with SettlementPoller instead of relying
on the feed alone.

- A malformed event is reported through `on_error` and the stream continues.
- A connection error, or the server closing the stream, is reported through
  `on_error` as FeedConnectionError and the subscription ends. Reconnecting
  is up to the caller.
"""
import json
import logging
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

import pydantic
import requests
from pydantic import BaseModel, Field

from app.x402.exceptions import FeedConnectionError, FeedEventError, X402Error

logger = logging.getLogger(__name__)

# Event types the AA-API documents; others are delivered as-is
FEED_EVENT_TYPES = ("balance_update", "transaction_update", "fill", "pnl", "settlement")

# SSE event names that carry no payload for consumers
HEARTBEAT_EVENTS = {"heartbeat", "ping"}


class FeedEvent(BaseModel):
    """One event delivered on the live feed."""
    type: str = Field(..., min_length=1)
    data: Any = None
    timestamp: Optional[str] = None

    @property
    def is_known(self) -> bool:
        return self.type in FEED_EVENT_TYPES


def iter_sse_messages(lines: Iterable[Any]) -> Iterator[Dict[str, str]]:
    """
    Group raw SSE lines into messages.

    Yields dicts with `event` (defaults to "message") and `data` (data lines
    joined with newlines). Comment lines (":" prefix) are dropped.
    """
    event_name = "message"
    data_lines = []

    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if line is None:
            continue
        line = line.rstrip("\r")

        if line == "":
            if data_lines:
                yield {"event": event_name, "data": "\n".join(data_lines)}
            event_name = "message"
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event_name = value or "message"
        elif field == "data":
            data_lines.append(value)
        # id and retry are not used

    if data_lines:
        yield {"event": event_name, "data": "\n".join(data_lines)}


def parse_feed_event(raw: str) -> FeedEvent:
    """
    Decode one SSE data payload into a FeedEvent.

    Raises:
        FeedEventError: If the payload is not a JSON object with a `type`
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FeedEventError(f"Feed event is not valid JSON: {e}", raw=raw) from e

    if not isinstance(payload, dict):
        raise FeedEventError("Feed event must be a JSON object", raw=raw)

    try:
        return FeedEvent.model_validate(payload)
    except pydantic.ValidationError as e:
        raise FeedEventError(f"Malformed feed event: {e.errors()[0]['msg']}", raw=raw) from e


class FeedSubscription:
    """
    Handle for one live feed subscription.

    The stream is consumed on a daemon thread started by `start()`.
    `cancel()` stops delivery; no callback fires after it returns, apart
    from one already in progress.
    """

    def __init__(
        self,
        session: requests.Session,
        url: str,
        on_event: Callable[[FeedEvent], None],
        on_error: Optional[Callable[[X402Error], None]] = None,
        timeout: Optional[float] = None,
    ):
        self.session = session
        self.url = url
        self.on_event = on_event
        self.on_error = on_error
        self.timeout = timeout
        self._cancelled = threading.Event()
        self._finished = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_active(self) -> bool:
        return not self._cancelled.is_set() and not self._finished.is_set()

    def start(self) -> "FeedSubscription":
        self._thread = threading.Thread(target=self.run, name="aa-live-feed", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Stop delivering events and close the underlying connection."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        response = self._response
        if response is not None:
            response.close()
        logger.info("Live feed subscription cancelled")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _report(self, error: X402Error) -> None:
        if self._cancelled.is_set():
            return
        if self.on_error is None:
            logger.warning(f"Live feed error with no handler: {error}")
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("Live feed on_error callback raised")

    def _dispatch(self, message: Dict[str, str]) -> None:
        if message["event"] in HEARTBEAT_EVENTS:
            return
        try:
            event = parse_feed_event(message["data"])
        except FeedEventError as e:
            logger.warning(f"Skipping malformed feed event: {e}")
            self._report(e)
            return
        if not event.is_known:
            logger.debug(f"Delivering unrecognized feed event type {event.type}")
        try:
            self.on_event(event)
        except Exception:
            logger.exception(f"Live feed on_event callback raised for {event.type} event")

    def run(self) -> None:
        """Consume the stream until it ends, fails or is cancelled."""
        try:
            with self.session.get(
                self.url,
                stream=True,
                timeout=self.timeout,
                headers={"Accept": "text/event-stream"},
            ) as response:
                self._response = response
                if self._cancelled.is_set():
                    return
                response.raise_for_status()
                if response.encoding is None:
                    response.encoding = "utf-8"

                for message in iter_sse_messages(response.iter_lines(decode_unicode=True)):
                    if self._cancelled.is_set():
                        return
                    self._dispatch(message)

            self._report(FeedConnectionError("Live feed closed by server"))

        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"Live feed rejected: HTTP {status_code}")
            self._report(FeedConnectionError(f"Live feed rejected (HTTP {status_code})", status_code=status_code))
        except (requests.RequestException, OSError, ValueError) as e:
            if self._cancelled.is_set():
                logger.debug(f"Live feed closed after cancel: {e}")
            else:
                logger.error(f"Live feed connection error: {e}")
                self._report(FeedConnectionError(f"Live feed connection failed: {e}"))
        except AttributeError as e:
            # urllib3 drops its file object when the response is closed mid-read
            if not self._cancelled.is_set():
                raise
            logger.debug(f"Live feed closed after cancel: {e}")
        finally:
            self._finished.set()
            self._response = None
