from __future__ import annotations

import hashlib
import random
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from ..domain.enums import ReminderMode
from ..domain.models import ReminderOptions, ReminderTime, parse_datetime


def jitter_for(seed_key: str, index: int, jitter_minutes: int) -> timedelta:
    """Reproducible jitter in ``[-jitter_minutes, +jitter_minutes]`` for one reminder slot."""

    if jitter_minutes <= 0:
        return timedelta(0)
    digest = hashlib.sha256(f"{seed_key}-{index}".encode("utf-8")).digest()
    rng = random.Random(int.from_bytes(digest[:8], "big"))
    return timedelta(seconds=round(rng.uniform(-jitter_minutes, jitter_minutes) * 60))


def _random_jitter(rng: random.Random, jitter_minutes: int) -> timedelta:
    if jitter_minutes <= 0:
        return timedelta(0)
    return timedelta(seconds=round(rng.uniform(-jitter_minutes, jitter_minutes) * 60))


def compute_reminder_times(
    base_time: Any,
    offsets: Sequence[float],
    options: ReminderOptions,
    *,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[ReminderTime]:
    """Compute future reminder timestamps for an event at ``base_time``.

    ``offsets`` are minutes before ``base_time`` in ``MINUTES_BEFORE`` mode and
    days after it in ``SPACED_REPETITION`` mode. Only the first
    ``options.max_count`` offsets are used; timestamps at or before ``now`` are
    dropped rather than clamped. Output follows the order of ``offsets``.
    """

    base = parse_datetime(base_time)
    if any(offset < 0 for offset in offsets):
        raise ValueError("Reminder offsets must be non-negative.")
    if options.deterministic and options.jitter_minutes > 0 and not options.seed_key:
        raise ValueError("Deterministic jitter requires a seed_key.")

    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    source = rng or random.SystemRandom()

    scheduled: list[ReminderTime] = []
    for index, offset in enumerate(list(offsets)[: options.max_count]):
        if options.mode is ReminderMode.MINUTES_BEFORE:
            moment = base - timedelta(minutes=offset)
        else:
            moment = base + timedelta(days=offset)
            if options.preferred_hour is not None:
                moment = moment.replace(hour=options.preferred_hour, minute=0, second=0, microsecond=0)

        if options.deterministic:
            moment += jitter_for(options.seed_key or "", index, options.jitter_minutes)
        else:
            moment += _random_jitter(source, options.jitter_minutes)

        if moment <= current:
            continue
        scheduled.append(ReminderTime(at=moment, offset=offset, index=index))
    return scheduled
