"""Change events delivered by the realtime feed."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import DecodeError
from ..models import Table


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class FeedMessage:
    """Raw message as received from the feed, before decoding."""

    table: str
    payload: str | bytes


@dataclass
class ChangeEvent:
    """A remote-originated row change.

    ``record`` is the new row for inserts and updates. ``old_record`` is the
    pre-delete snapshot (tombstone) for deletes; it may carry only the
    primary key columns.
    """

    table: Table
    type: EventType
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None
    commit_timestamp: str | None = None

    @classmethod
    def from_message(cls, message: FeedMessage) -> "ChangeEvent":
        """Decode a feed message.

        The payload is a JSON object with ``type`` (or ``eventType``),
        ``record``, ``old_record`` and optionally ``table`` and
        ``commit_timestamp``.

        Raises:
            DecodeError: If the payload is malformed or names another table.
        """
        try:
            data = json.loads(message.payload)
        except (TypeError, ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"{message.table}: invalid JSON payload: {e}") from e
        if not isinstance(data, dict):
            raise DecodeError(f"{message.table}: payload is not an object")

        table_name = data.get("table") or message.table
        if table_name != message.table:
            raise DecodeError(f"payload for {table_name} arrived on the {message.table} stream")
        try:
            table = Table(table_name)
            event_type = EventType(str(data.get("type") or data.get("eventType")).upper())
        except ValueError as e:
            raise DecodeError(f"{message.table}: {e}") from e

        event = cls(
            table=table,
            type=event_type,
            record=data.get("record") or None,
            old_record=data.get("old_record") or None,
            commit_timestamp=data.get("commit_timestamp"),
        )
        if event_type == EventType.DELETE and event.old_record is None:
            raise DecodeError(f"{table.value}: DELETE without old_record")
        if event_type != EventType.DELETE and event.record is None:
            raise DecodeError(f"{table.value}: {event_type.value} without record")
        return event

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table.value,
            "type": self.type.value,
            "record": self.record,
            "old_record": self.old_record,
            "commit_timestamp": self.commit_timestamp,
        }
