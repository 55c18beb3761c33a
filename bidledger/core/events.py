"""
Events - notifications emitted by the auction ledger.

External watchers subscribe to the ``EventLog`` and are called for every
event of a committed operation. Events emitted by an operation that is
later rolled back are discarded before any subscriber sees them. A
subscriber that raises is logged and skipped.
"""

from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Type, TypeVar, Union

from bidledger.utils.logger import get_logger

logger = get_logger("events")


@dataclass(frozen=True)
class NewBid:
    """A bid was accepted and its bidder now leads."""
    bidder: str
    amount: int


@dataclass(frozen=True)
class AuctionEnded:
    """The owner closed the auction."""
    winner: Optional[str]
    amount: int


@dataclass(frozen=True)
class RefundIssued:
    """A refund payout reached its recipient."""
    user: str
    amount: int


@dataclass(frozen=True)
class RefundFailed:
    """A refund payout was rejected by its recipient."""
    user: str
    amount: int


Event = Union[NewBid, AuctionEnded, RefundIssued, RefundFailed]
EventT = TypeVar("EventT", NewBid, AuctionEnded, RefundIssued, RefundFailed)

EVENT_TYPES = {cls.__name__: cls for cls in (NewBid, AuctionEnded, RefundIssued, RefundFailed)}


def event_to_dict(event: Event) -> dict:
    """Serialize an event with its kind."""
    return {"kind": type(event).__name__, **asdict(event)}


def event_from_dict(data: dict) -> Event:
    """Inverse of ``event_to_dict``."""
    fields = dict(data)
    kind = fields.pop("kind")
    return EVENT_TYPES[kind](**fields)


class EventLog:
    """
    Ordered, append-only record of emitted events.

    ``mark()`` / ``rollback(mark)`` bracket an operation; ``publish(mark)``
    hands everything after ``mark`` to subscribers once it is committed.
    """

    def __init__(self, events: Optional[List[Event]] = None):
        self._events: List[Event] = list(events or [])
        self._subscribers: List[Callable[[Event], None]] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def emit(self, event: Event) -> None:
        self._events.append(event)
        logger.debug(f"Event {type(event).__name__}: {asdict(event)}")

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        """Register a watcher called for each committed event."""
        self._subscribers.append(callback)

    def mark(self) -> int:
        return len(self._events)

    def rollback(self, mark: int) -> None:
        del self._events[mark:]

    def publish(self, mark: int) -> None:
        """
        Notify subscribers of every event after ``mark``.

        Called once the operation has committed, so a failing subscriber is
        logged and skipped; it cannot undo or fail the operation.
        """
        for event in self._events[mark:]:
            for callback in self._subscribers:
                try:
                    callback(event)
                except Exception as exc:
                    logger.error(
                        f"Subscriber {getattr(callback, '__name__', callback)!r} failed on "
                        f"{type(event).__name__}: {type(exc).__name__}: {exc}"
                    )

    def since(self, mark: int) -> List[Event]:
        return list(self._events[mark:])

    def filter(self, kind: Type[EventT]) -> List[EventT]:
        """All events of one kind, in emission order."""
        return [e for e in self._events if isinstance(e, kind)]

    def all(self) -> List[Event]:
        return list(self._events)
