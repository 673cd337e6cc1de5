"""Five-field cron matching against wall-clock time in a routine's time zone."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import InvalidCronExpression, InvalidTimezone


@dataclass(frozen=True)
class LocalParts:
    year: int
    month: int
    day: int
    hour: int
    minute: int
    weekday: int  # 0 = Sunday ... 6 = Saturday

    def minute_bucket(self) -> str:
        """YYYYMMDDHHMM, the idempotence bucket for one local minute."""
        return f"{self.year:04d}{self.month:02d}{self.day:02d}{self.hour:02d}{self.minute:02d}"

    def date_str(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


def local_parts(now: datetime, tz_name: str) -> LocalParts:
    """Resolve an aware ``now`` into calendar fields of ``tz_name``."""
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezone(f"invalid time zone: {tz_name!r}") from exc
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    # isoweekday(): Monday=1 .. Sunday=7
    return LocalParts(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        weekday=local.isoweekday() % 7,
    )


def _parse_int(text: str) -> int | None:
    return int(text) if text.isdigit() else None


def match_field(expr: str, value: int, lo: int, hi: int) -> bool:
    """Match one cron field: ``*``, ``n``, ``a-b``, ``*/s``, ``a-b/s`` and comma lists.

    Malformed list items never match; they do not poison the rest of the list.
    """
    for token in (t.strip() for t in expr.split(",")):
        if not token:
            continue
        if token == "*":
            return True

        base, _, step_text = token.partition("/")
        step = None
        if step_text:
            step = _parse_int(step_text)
            if step is None or "/" in step_text:
                continue

        if base == "*":
            start, end = lo, hi
        elif "-" in base:
            a_text, _, b_text = base.partition("-")
            a, b = _parse_int(a_text), _parse_int(b_text)
            if a is None or b is None:
                continue
            start, end = max(lo, min(hi, a)), max(lo, min(hi, b))
        else:
            n = _parse_int(base)
            if n is None:
                continue
            if step is None:
                if n == value:
                    return True
                continue
            start, end = n, hi

        if value < start or value > end:
            continue
        if step is None or step <= 1 or (value - start) % step == 0:
            return True
    return False


def cron_mismatch(cron: str, lp: LocalParts) -> str | None:
    """Return ``None`` when ``cron`` matches ``lp``, else the first failing field.

    Raises InvalidCronExpression when the expression does not have five fields.
    """
    fields = cron.split()
    if len(fields) != 5:
        raise InvalidCronExpression(f"expected 5 cron fields, got {len(fields)}: {cron!r}")
    minute, hour, dom, month, dow = fields

    if not match_field(minute, lp.minute, 0, 59):
        return "minute_no_match"
    if not match_field(hour, lp.hour, 0, 23):
        return "hour_no_match"
    if not match_field(dom, lp.day, 1, 31):
        return "dom_no_match"
    if not match_field(month, lp.month, 1, 12):
        return "month_no_match"
    # Day-of-week accepts both 0 and 7 for Sunday.
    if not (match_field(dow, lp.weekday, 0, 7) or (lp.weekday == 0 and match_field(dow, 7, 0, 7))):
        return "dow_no_match"
    return None


def cron_matches(cron: str, lp: LocalParts) -> bool:
    return cron_mismatch(cron, lp) is None
