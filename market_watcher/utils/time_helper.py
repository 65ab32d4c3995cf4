from datetime import date, datetime, timezone
from typing import Optional

import pytz
from croniter import croniter


def today_utc(now: Optional[datetime] = None) -> date:
    """
    Returns the current calendar date in UTC.
    Anchor-date resolution always starts from this date, independent of the schedule timezone.
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(timezone.utc).date()


def get_next_fire_time(
    cron_expression: str, current_time: datetime, tz: Optional[pytz.BaseTzInfo] = None
) -> datetime:
    """
    Calculate the next instant strictly after current_time matched by a cron expression.

    Args:
        cron_expression: Standard 5-field cron expression (e.g., "0 9 * * *")
        current_time: Current time (timezone-aware or naive)
        tz: Timezone the cron expression is evaluated in

    Returns:
        Next fire time as a timezone-aware datetime in tz (or current_time's zone when tz is None)
    """
    if tz:
        if current_time.tzinfo is None:
            current_time = tz.localize(current_time)
        elif current_time.tzinfo != tz:
            current_time = current_time.astimezone(tz)

    next_fire: datetime = croniter(cron_expression, current_time).get_next(datetime)

    return next_fire
