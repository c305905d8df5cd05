import threading

from apscheduler.schedulers.background import BackgroundScheduler

from services import data_service
from services.notifications import check_upcoming_deadlines
from services.record_store import StoreError


def start_daemon_thread(target, args=(), kwargs=None):
    """Start a daemon thread with a consistent helper API."""
    thread = threading.Thread(target=target, args=args, kwargs=kwargs or {}, daemon=True)
    thread.start()
    return thread


def start_app_context_job(app, target, args=(), kwargs=None, on_error=None):
    """
    Run a callable in a daemon thread inside the provided Flask app context.
    """

    def _run():
        with app.app_context():
            try:
                target(*args, **(kwargs or {}))
            except Exception as exc:
                if on_error:
                    on_error(exc)

    return start_daemon_thread(_run)


def sweep_upcoming_deadlines(app, store, notifier, now):
    """Queue deadline toasts for every user that has todos. Returns the number of todos flagged."""
    tz = app.config.get('DEFAULT_TIMEZONE')
    flagged = 0
    try:
        owners = store.list_owners(data_service.TODOS)
    except StoreError as e:
        app.logger.error(f"Deadline sweep could not list users: {e}")
        return 0
    for user_id in owners:
        try:
            data = data_service.fetch_user_data(store, user_id, tz=tz)
        except StoreError as e:
            app.logger.error(f"Deadline sweep failed for user {user_id}: {e}")
            continue
        flagged += len(check_upcoming_deadlines(data[data_service.TODOS], notifier, user_id, now))
    app.logger.info(f"Deadline sweep flagged {flagged} todos across {len(owners)} users")
    return flagged


def start_scheduler(app, job, minutes=60):
    """Start the background scheduler running ``job`` every ``minutes`` inside an app context."""
    scheduler = BackgroundScheduler(timezone=app.config.get('DEFAULT_TIMEZONE', 'UTC'))

    def _run_job():
        with app.app_context():
            try:
                job()
            except Exception as e:
                app.logger.error(f"Error running deadline sweep: {e}")

    scheduler.add_job(
        _run_job,
        'interval',
        minutes=minutes,
        id='upcoming_deadline_sweep',
        replace_existing=True
    )
    scheduler.start()

    # Catch up once at startup without blocking the import.
    start_app_context_job(
        app,
        job,
        on_error=lambda exc: app.logger.error(f"Error running deadline sweep catch-up: {exc}")
    )
    return scheduler
