"""Minimal cron expressions: 5 fields, or 6 with a leading seconds field.

Supported per field: ``*``, numbers, ranges ``a-b``, steps ``*/n`` and
``a-b/n``, and comma lists. Day-of-week accepts 0-7 (0 and 7 are Sunday).
When both day-of-month and day-of-week are restricted a day matches if
either does, as in classic cron.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

_FIELD_RE = re.compile(r"^(\*|\d+(?:-\d+)?)(?:/(\d+))?$")

# (name, min, max)
_SECOND = ("second", 0, 59)
_MINUTE = ("minute", 0, 59)
_HOUR = ("hour", 0, 23)
_DOM = ("day of month", 1, 31)
_MONTH = ("month", 1, 12)
_DOW = ("day of week", 0, 7)

_SEARCH_LIMIT = timedelta(days=366 * 5)


def _parse_field(expr: str, bounds: tuple[str, int, int]) -> frozenset[int]:
    name, lo, hi = bounds
    values: set[int] = set()
    for part in expr.split(","):
        m = _FIELD_RE.match(part)
        if not m:
            raise ValueError(f"Cron {name}: expressão inválida '{part}'")
        base, step_txt = m.groups()
        step = int(step_txt) if step_txt else 1
        if step < 1:
            raise ValueError(f"Cron {name}: passo inválido '{part}'")
        if base == "*":
            start, end = lo, hi
        elif "-" in base:
            start, end = (int(x) for x in base.split("-"))
        else:
            start = int(base)
            end = hi if step_txt else start
        if start < lo or end > hi or start > end:
            raise ValueError(f"Cron {name}: '{part}' fora do intervalo {lo}-{hi}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0 = Sunday
    dom_any: bool
    dow_any: bool

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        fields = expression.split()
        if len(fields) == 5:
            fields = ["0", *fields]
        if len(fields) != 6:
            raise ValueError(f"Cron: esperado 5 ou 6 campos, recebido {len(fields)}: '{expression}'")
        sec, minute, hour, dom, month, dow = fields
        weekdays = _parse_field(dow, _DOW)
        if 7 in weekdays:
            weekdays = (weekdays - {7}) | {0}
        return cls(
            expression=expression,
            seconds=_parse_field(sec, _SECOND),
            minutes=_parse_field(minute, _MINUTE),
            hours=_parse_field(hour, _HOUR),
            days=_parse_field(dom, _DOM),
            months=_parse_field(month, _MONTH),
            weekdays=frozenset(weekdays),
            dom_any=dom == "*",
            dow_any=dow == "*",
        )

    def _day_matches(self, dt: datetime) -> bool:
        dom_ok = dt.day in self.days
        dow_ok = (dt.isoweekday() % 7) in self.weekdays
        if self.dom_any or self.dow_any:
            return dom_ok and dow_ok
        return dom_ok or dow_ok

    def next_after(self, dt: datetime) -> datetime:
        """Return the first matching time strictly after *dt* (second resolution)."""
        t = dt.replace(microsecond=0) + timedelta(seconds=1)
        limit = dt + _SEARCH_LIMIT
        while t <= limit:
            if t.month not in self.months:
                year = t.year + (t.month == 12)
                month = t.month % 12 + 1
                t = t.replace(year=year, month=month, day=1, hour=0, minute=0, second=0)
                continue
            if not self._day_matches(t):
                t = (t + timedelta(days=1)).replace(hour=0, minute=0, second=0)
                continue
            if t.hour not in self.hours:
                t = (t + timedelta(hours=1)).replace(minute=0, second=0)
                continue
            if t.minute not in self.minutes:
                t = (t + timedelta(minutes=1)).replace(second=0)
                continue
            if t.second not in self.seconds:
                t += timedelta(seconds=1)
                continue
            return t
        raise ValueError(f"Cron '{self.expression}' não tem próxima execução")
