"""
Recurring calendar item expansion.

Turns a stored calendar template (a record with a ``recurrence`` rule and
blackout dates) into the concrete occurrences shown on the calendar. Nothing
here touches the record store; callers pass in templates and an optional
``now`` used for the default one-year horizon.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

WEEKDAY_TOKENS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
FREQUENCIES = ('none', 'day', 'week', 'month', 'year')
DEFAULT_HORIZON = relativedelta(years=1)

# Record keys owned by EventTemplate; everything else rides along in `extra`.
_TEMPLATE_KEYS = {
    'id', 'title', 'start', 'end', 'allDay', 'category', 'location',
    'description', 'notification', 'priority', 'status', 'recurrence',
}


def _coerce_interval(raw) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 1
    return max(value, 1)


def _as_day(value, tzinfo=None) -> Optional[date]:
    """Reduce a date/datetime/ISO string to a calendar day."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        if tzinfo is not None and value.tzinfo is not None:
            value = value.astimezone(tzinfo)
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning("Ignoring unparseable recurrence day %r", value)
        return None


def _as_list(raw) -> list:
    return list(raw) if isinstance(raw, (list, tuple)) else []


def _localize(naive: datetime, tzinfo) -> datetime:
    if tzinfo is None:
        return naive
    if hasattr(tzinfo, 'localize'):
        # pytz zones need localize() to pick the right offset for the date.
        return tzinfo.localize(naive)
    return naive.replace(tzinfo=tzinfo)


def _normalize(value: datetime) -> datetime:
    tzinfo = value.tzinfo
    if tzinfo is not None and hasattr(tzinfo, 'normalize'):
        return tzinfo.normalize(value)
    return value


@dataclass
class Recurrence:
    frequency: str = 'none'
    interval: int = 1
    weekdays: List[str] = field(default_factory=list)
    end_date: Any = None
    start: Any = None
    blackout_dates: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> Optional['Recurrence']:
        """Build a rule from a stored record. Anything that is not a mapping counts as no rule."""
        if not raw or not isinstance(raw, dict):
            return None
        return cls(
            frequency=str(raw.get('frequency') or 'none').strip().lower(),
            interval=_coerce_interval(raw.get('interval', 1)),
            weekdays=_as_list(raw.get('weekdays')),
            end_date=raw.get('endDate'),
            start=raw.get('start'),
            blackout_dates=_as_list(raw.get('blackoutDates')),
        )

    @property
    def is_recurring(self) -> bool:
        return self.frequency != 'none'

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'frequency': self.frequency,
            'interval': self.interval,
            'weekdays': list(self.weekdays),
            'endDate': self.end_date,
            'blackoutDates': list(self.blackout_dates),
        }
        if self.start is not None:
            data['start'] = self.start
        return data


@dataclass
class EventTemplate:
    """Stored definition of a calendar item, possibly recurring."""
    id: Optional[str]
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    category: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    notification: Optional[int] = None
    priority: str = 'medium'
    status: str = 'confirmed'
    recurrence: Optional[Recurrence] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'EventTemplate':
        start = record.get('start')
        end = record.get('end') or start
        notification = record.get('notification')
        try:
            notification = int(notification) if notification not in (None, '') else None
        except (TypeError, ValueError):
            notification = None
        return cls(
            id=record.get('id'),
            title=record.get('title') or '',
            start=start,
            end=end,
            all_day=bool(record.get('allDay', False)),
            category=record.get('category'),
            location=record.get('location'),
            description=record.get('description'),
            notification=notification,
            priority=record.get('priority') or 'medium',
            status=record.get('status') or 'confirmed',
            recurrence=Recurrence.from_dict(record.get('recurrence')),
            extra={k: v for k, v in record.items() if k not in _TEMPLATE_KEYS},
        )

    @property
    def duration(self):
        return self.end - self.start


@dataclass
class EventInstance:
    """One concrete occurrence of a template."""
    template: EventTemplate
    start: datetime
    end: datetime
    is_recurring: bool = False

    @property
    def day(self) -> date:
        return self.start.date()

    def to_dict(self) -> Dict[str, Any]:
        tpl = self.template
        data = dict(tpl.extra)
        data.update({
            'id': tpl.id,
            'title': tpl.title,
            'start': self.start,
            'end': self.end,
            'allDay': tpl.all_day,
            'category': tpl.category,
            'location': tpl.location,
            'description': tpl.description,
            'notification': tpl.notification,
            'priority': tpl.priority,
            'status': tpl.status,
            'recurrence': tpl.recurrence.to_dict() if tpl.recurrence else None,
            'isRecurring': self.is_recurring,
            'instanceDate': self.day.isoformat(),
        })
        return data


def _step(frequency: str, amount: int) -> Optional[relativedelta]:
    if frequency in ('day', 'week'):
        return relativedelta(days=amount)
    if frequency == 'month':
        return relativedelta(months=amount)
    if frequency == 'year':
        return relativedelta(years=amount)
    return None


def _matches(recurrence: Recurrence, candidate: date, original: date) -> bool:
    freq = recurrence.frequency
    if freq == 'day':
        return True
    if freq == 'week':
        return WEEKDAY_TOKENS[candidate.weekday()] in recurrence.weekdays
    if freq == 'month':
        return candidate.day == original.day
    if freq == 'year':
        return candidate.month == original.month and candidate.day == original.day
    return False


def expand_event(template: EventTemplate, now: Optional[datetime] = None,
                 until: Optional[datetime] = None) -> List[EventInstance]:
    """
    Expand one template into its occurrences.

    Non-recurring templates come back as a single instance with their own
    start/end. Recurring ones walk a grid anchored on the template's start day
    (anchor + k * interval units) up to the recurrence end date, or one year
    from ``now`` when the series is open-ended.

    ``until`` stops the walk early, e.g. at the end of the visible window.
    """
    recurrence = template.recurrence
    if recurrence is None or not recurrence.is_recurring:
        return [EventInstance(template, template.start, template.end, is_recurring=False)]

    if recurrence.frequency not in FREQUENCIES:
        logger.debug("Unknown recurrence frequency %r on %s", recurrence.frequency, template.id)
        return []

    tzinfo = template.start.tzinfo
    interval = _coerce_interval(recurrence.interval)
    anchor = template.start.date()

    window_start = anchor
    recurrence_start = _as_day(recurrence.start, tzinfo)
    if recurrence_start and recurrence_start > window_start:
        window_start = recurrence_start

    last_day = _as_day(recurrence.end_date, tzinfo)
    if last_day is None:
        if now is None:
            now = datetime.now(tzinfo)
        elif tzinfo is not None and now.tzinfo is not None:
            now = now.astimezone(tzinfo)
        last_day = (now + DEFAULT_HORIZON).date()
    until_day = _as_day(until, tzinfo)
    if until_day is not None and until_day < last_day:
        last_day = until_day

    blackout = {d for d in (_as_day(v, tzinfo) for v in recurrence.blackout_dates) if d}
    time_of_day = template.start.time()
    duration = template.duration

    instances = []
    steps = 0
    candidate = anchor
    while candidate <= last_day:
        if candidate >= window_start and candidate not in blackout \
                and _matches(recurrence, candidate, anchor):
            try:
                start = _localize(datetime.combine(candidate, time_of_day), tzinfo)
                end = _normalize(start + duration)
            except OverflowError:
                break
            instances.append(EventInstance(template, start, end, is_recurring=True))
        steps += 1
        try:
            candidate = anchor + _step(recurrence.frequency, steps * interval)
        except (OverflowError, ValueError):
            # Stepped past date.max.
            break
    return instances


def _overlaps(instance: EventInstance, window_start, window_end) -> bool:
    if window_start is not None and instance.end < window_start:
        return False
    if window_end is not None and instance.start > window_end:
        return False
    return True


def expand_events(templates: Iterable[EventTemplate], window_start=None, window_end=None,
                  now=None) -> List[EventInstance]:
    """Expand every template and keep occurrences touching the window, ordered by start."""
    instances = []
    for template in templates:
        for instance in expand_event(template, now=now, until=window_end):
            if _overlaps(instance, window_start, window_end):
                instances.append(instance)
    instances.sort(key=lambda inst: inst.start)
    return instances


def recurrence_summary(template: EventTemplate) -> str:
    recurrence = template.recurrence
    if recurrence is None or not recurrence.is_recurring:
        return ''
    interval = _coerce_interval(recurrence.interval)
    summary = 'Occurs every '
    if interval > 1:
        summary += f"{interval} "
    summary += recurrence.frequency
    if interval > 1:
        summary += 's'
    if recurrence.frequency == 'week' and recurrence.weekdays:
        summary += f" on {', '.join(recurrence.weekdays)}"
    summary += f" starting {template.start.strftime('%d %b %Y')}"
    end_day = _as_day(recurrence.end_date, template.start.tzinfo)
    if end_day:
        summary += f" until {end_day.strftime('%d %b %Y')}"
    return summary


def add_blackout_date(record: Dict[str, Any], day) -> Dict[str, Any]:
    """Return a copy of a calendar record with ``day`` suppressed from its series."""
    updated = dict(record)
    recurrence = updated.get('recurrence')
    recurrence = dict(recurrence) if isinstance(recurrence, dict) else {}
    blackout = list(recurrence.get('blackoutDates') or [])
    target = _as_day(day)
    if target is not None and target not in {_as_day(v) for v in blackout}:
        blackout.append(target)
    recurrence['blackoutDates'] = blackout
    updated['recurrence'] = recurrence
    return updated
