"""Transient toast messages queued per user and drained by the client."""
import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 3000
DEADLINE_DURATION_MS = 5000
DEADLINE_WINDOW = timedelta(days=2)


class ToastNotifier:
    """Fire-and-forget notifications; nothing is acknowledged or persisted."""

    def __init__(self, max_pending=50):
        self.max_pending = max_pending
        self._queues = defaultdict(lambda: deque(maxlen=self.max_pending))
        self._lock = threading.Lock()

    def notify(self, user_id, message, duration=DEFAULT_DURATION_MS, level='info'):
        toast = {
            'message': message,
            'duration': duration,
            'level': level,
            'created_at': datetime.utcnow().isoformat(),
        }
        with self._lock:
            self._queues[str(user_id)].append(toast)
        logger.debug("Queued %s toast for user %s: %s", level, user_id, message)

    def drain(self, user_id):
        with self._lock:
            queue = self._queues.pop(str(user_id), None)
        return list(queue or [])

    def pending(self, user_id):
        with self._lock:
            return list(self._queues.get(str(user_id)) or [])


def _is_open(todo):
    return (todo.get('status') or '').lower() != 'completed'


def check_upcoming_deadlines(todos, notifier, user_id, now):
    """Toast every open todo due within the next two days. Returns the todos flagged."""
    horizon = now + DEADLINE_WINDOW
    flagged = []
    for todo in todos or []:
        due = todo.get('dueDate')
        if not isinstance(due, datetime) or not _is_open(todo):
            continue
        if now < due <= horizon:
            notifier.notify(
                user_id,
                f'Upcoming deadline: "{todo.get("title") or "Untitled"}" is due on {due.date().isoformat()}',
                duration=DEADLINE_DURATION_MS,
            )
            flagged.append(todo)
    return flagged
