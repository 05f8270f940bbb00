"""
Event ingestion: applies call_started / call_ended notifications to the ledger.

Checks run in a fixed order (phone format, required fields, existence,
already-ended, timestamp parsing, negative duration, maximum duration) and
the first failure is raised.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from calltracker.duration import (
    MAX_CALL_DURATION_SECONDS,
    TimestampLike,
    compute_duration,
    parse_timestamp,
    utcnow,
)
from calltracker.errors import (
    AlreadyEnded,
    CallNotFound,
    DurationExceedsMaximum,
    DurationTooLong,
    InvalidDuration,
    InvalidEventType,
    InvalidPhoneNumber,
    MissingField,
    NegativeDuration,
    PhoneNumberTooLong,
    UpdateConflict,
)
from calltracker.models import CallStatus
from calltracker.schemas import EventRequest, EventResponse, EventType
from calltracker.storage import CallStore
from calltracker.utils import (
    MAX_PHONE_DIGITS,
    format_duration,
    is_valid_phone_number,
    phone_number_digits,
)

logger = logging.getLogger(__name__)


def _check_phone_format(*numbers: Optional[str]) -> None:
    for number in numbers:
        if number is not None and not is_valid_phone_number(number):
            logger.info(f"Rejected phone number: {number!r}")
            raise InvalidPhoneNumber(number)


class EventIngestionService:
    """
    Applies call lifecycle notifications to the calls ledger.

    Args:
        store: Storage collaborator for the calls table
        max_duration: Longest call (seconds) accepted from an end event
        clock: Source of the current time, used when started is omitted
    """

    def __init__(
        self,
        store: CallStore,
        max_duration: int = MAX_CALL_DURATION_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.max_duration = max_duration
        self.clock = clock

    def handle_call_started(
        self,
        call_id: Optional[str],
        from_number: Optional[str],
        to_number: Optional[str],
        started_at: Optional[TimestampLike] = None,
    ):
        """
        Record a new call in the 'started' status.

        Raises:
            InvalidPhoneNumber, MissingField, PhoneNumberTooLong,
            InvalidTimestamp: bad input
            DuplicateCallId: call_id is already in the ledger
        """
        logger.info(f"call_started: id={call_id}, from={from_number}, to={to_number}")

        _check_phone_format(from_number, to_number)

        for field, value in (("call_id", call_id), ("from", from_number), ("to", to_number)):
            if not value:
                raise MissingField(field)

        for number in (from_number, to_number):
            if phone_number_digits(number) > MAX_PHONE_DIGITS:
                raise PhoneNumberTooLong(MAX_PHONE_DIGITS)

        started = parse_timestamp(started_at) if started_at not in (None, "") else self.clock()
        logger.debug(f"call_started: resolved start time {started.isoformat()}")

        return self.store.insert_call(call_id, from_number, to_number, started)

    def handle_call_ended(self, call_id: Optional[str], ended_at: Optional[TimestampLike]) -> str:
        """
        Close an open call and record its duration.

        Returns:
            The formatted duration, e.g. "1m 30s"

        Raises:
            MissingField: call_id or ended_at absent
            CallNotFound: no call with this id
            AlreadyEnded: the call was already closed
            InvalidTimestamp: ended_at cannot be parsed
            InvalidDuration: ended_at is before the stored start
            DurationExceedsMaximum: the call would be longer than max_duration
            UpdateConflict: another writer closed the call first
        """
        logger.info(f"call_ended: id={call_id}, ended={ended_at}")

        if not call_id:
            raise MissingField("call_id")
        if ended_at is None or ended_at == "":
            raise MissingField("ended")

        call = self.store.get_call(call_id)
        if call is None:
            raise CallNotFound(call_id)

        if call.status == CallStatus.ENDED:
            logger.info(f"call_ended: {call_id} already ended, rejecting")
            raise AlreadyEnded(call_id)

        ended = parse_timestamp(ended_at)
        try:
            duration = compute_duration(call.started, ended, self.max_duration)
        except NegativeDuration as e:
            logger.info(f"call_ended: {call_id} ends before it starts ({e.seconds}s)")
            raise InvalidDuration()
        except DurationTooLong as e:
            logger.error(
                f"call_ended: {call_id} duration {e.seconds}s exceeds maximum {e.max_seconds}s "
                f"(started={call.started.isoformat()}, ended={ended.isoformat()})"
            )
            raise DurationExceedsMaximum(format_duration(e.seconds), e.max_seconds)

        if not self.store.end_call(call_id, ended, duration):
            logger.warning(f"call_ended: {call_id} was closed by another writer")
            raise UpdateConflict(call_id)

        formatted = format_duration(duration)
        logger.info(f"call_ended: {call_id} closed, duration={formatted}")
        return formatted

    def handle_event(self, event: EventRequest) -> EventResponse:
        """Dispatch a webhook notification on its type."""
        if event.type == EventType.CALL_STARTED:
            self.handle_call_started(event.call_id, event.from_number, event.to, event.started)
            return EventResponse(message="Call started event logged")

        if event.type == EventType.CALL_ENDED:
            # Numbers are optional on end events but must be well formed if sent
            _check_phone_format(event.from_number, event.to)
            duration = self.handle_call_ended(event.call_id, event.ended)
            return EventResponse(message="Call ended event logged", duration=duration)

        raise InvalidEventType(event.type)
