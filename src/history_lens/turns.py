"""Group a conversation's messages into display turns."""

from .config import DEFAULT_TURN_GAP_SECONDS, UNKNOWN_TIMESTAMP
from .models import DayBucket, Message, Turn
from .timeutils import format_day


def group_turns(messages: list[Message], gap: float = DEFAULT_TURN_GAP_SECONDS) -> list[Turn]:
    """Collapse consecutive same-role messages into turns.

    A new turn starts when the role changes or when more than `gap` seconds
    separate a message from the end of the current turn. Timestamps are
    normalised to seconds first, so mixed-unit exports group correctly.
    """
    ordered = sorted(messages, key=lambda m: m.timestamp)
    turns: list[Turn] = []
    current: Turn | None = None

    for msg in ordered:
        ts = msg.timestamp
        if current is None or msg.role != current.role or ts - current.ts_end > gap:
            current = Turn(
                id=f"turn_{msg.message_id}",
                role=msg.role,
                vendor=msg.vendor,
                ts_start=ts,
                ts_end=ts,
                items=[msg],
            )
            turns.append(current)
        else:
            current.items.append(msg)
            current.ts_end = ts

    return turns


def bucket_by_day(turns: list[Turn]) -> list[DayBucket]:
    """Split turns into UTC calendar days, oldest day first.

    Undated turns share one "unknown" bucket placed before the dated days,
    matching where group_turns sorts them.
    """
    buckets: dict[str, list[Turn]] = {}
    for turn in turns:
        buckets.setdefault(format_day(turn.ts_start), []).append(turn)

    # ISO days sort chronologically as strings
    days = sorted(buckets, key=lambda day: (day != UNKNOWN_TIMESTAMP, day))
    return [DayBucket(day=day, turns=buckets[day]) for day in days]
