"""
Natural-language unblock dates.

Understands the phrases people type when parking a task: "tomorrow",
"tonight", "next week", "in 3 days", "next friday", "12/24", "2025-01-31",
"14:30", plus full ISO timestamps. Results carry the timezone of `now`.
"""
import calendar
import re
from datetime import datetime, timedelta
from typing import Optional

from stratatm.logs import get_logger

log = get_logger("dates")

WEEKDAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']

MORNING = 9
AFTERNOON = 14
EVENING = 20

_IN_N = re.compile(r'in (\d+) (day|week|month)s?')
_MONTH_DAY = re.compile(r'^(\d{1,2})[/-](\d{1,2})$')
_FULL_DATE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})$')
_TIME = re.compile(r'^(\d{1,2}):(\d{2})$')


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the end of a shorter month."""
    index = value.month - 1 + months
    year, month = value.year + index // 12, index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)

def _at(value: datetime, hour: int, minute: int = 0) -> datetime:
    return value.replace(hour=hour, minute=minute, second=0, microsecond=0)

def _safe(build) -> Optional[datetime]:
    try:
        return build()
    except ValueError:
        return None

def parse_unblock_at(text: str, now: datetime) -> Optional[datetime]:
    """Parse `text` relative to `now`; None when the phrase is not understood."""
    phrase = ' '.join(text.lower().split())
    if not phrase:
        return None

    if 'tomorrow' in phrase:
        return now + timedelta(days=1)
    if 'today' in phrase:
        return now
    if 'tonight' in phrase or 'this evening' in phrase:
        return _at(now, EVENING)
    if 'this afternoon' in phrase:
        return _at(now, AFTERNOON)
    if 'this morning' in phrase:
        return _at(now, MORNING)
    if 'next week' in phrase:
        return now + timedelta(days=7)
    if 'next month' in phrase:
        return add_months(now, 1)

    match = _IN_N.search(phrase)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        if unit == 'day':
            return now + timedelta(days=amount)
        if unit == 'week':
            return now + timedelta(weeks=amount)
        return add_months(now, amount)

    for index, name in enumerate(WEEKDAYS):
        if name in phrase:
            days = (index - now.weekday()) % 7
            if phrase.startswith('next '):
                days += 7
            return _at(now + timedelta(days=days), MORNING)

    match = _MONTH_DAY.match(phrase)
    if match:
        month, day = int(match.group(1)), int(match.group(2))
        parsed = _safe(lambda: _at(now.replace(month=month, day=day), 0))
        if parsed is not None and parsed < now:
            # Already past this year
            parsed = _safe(lambda: parsed.replace(year=now.year + 1))
        return parsed

    match = _FULL_DATE.match(phrase)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe(lambda: _at(now.replace(year=year, month=month, day=day), 0))

    match = _TIME.match(phrase)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        return _safe(lambda: _at(now, hour, minute))

    try:
        parsed = datetime.fromisoformat(text.strip())
    except ValueError:
        log.debug(f"Unrecognised date phrase: {text!r}")
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=now.tzinfo)
