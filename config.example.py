# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Every value has a default, so an empty environment starts a working console engine.

This file exists to make the repo self-documenting even without opening src/zmanit/config.py.
"""

ENV_VARS = {
    # App / logging
    "ZMANIT_APP_NAME": "App display name, also the desktop notification app name (default: zmanit).",
    "ZMANIT_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Surfaces
    "ZMANIT_CONSOLE_ENABLED": "Run the console REPL (true/false, default: true).",
    "ZMANIT_PUSH_ENABLED": "Send desktop notifications via notify-send (true/false, default: false).",
    # Paths (gitignored)
    "ZMANIT_DATA_DIR": "Local data directory (default: .local/zmanit).",
    "ZMANIT_STATE_DB_PATH": "Shared state store shared by every open context (default: <data_dir>/state.sqlite3).",
    "ZMANIT_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    # Work calendar
    "ZMANIT_WORK_DAYS": "Comma/space separated day names (default: sun,mon,tue,wed,thu).",
    "ZMANIT_WORK_START": "Start of work hours, HH:MM (default: 08:00).",
    "ZMANIT_WORK_END": "End of work hours, HH:MM (default: 17:00).",
    "ZMANIT_DAILY_CAPACITY_MINUTES": "Plannable minutes per work day (default: 420).",
    "ZMANIT_LUNCH_START": "Lunch break start, HH:MM (default: 12:30).",
    "ZMANIT_LUNCH_MINUTES": "Lunch break length (default: 30).",
    "ZMANIT_RESCHEDULE_CUTOFF": "Cascaded tasks starting at or after this become overflow (default: 16:00).",
    # Slot search
    "ZMANIT_SLOT_LEAD_MINUTES": "Minimum lead time before a slot offered today (default: 10).",
    "ZMANIT_SLOT_GRID_MINUTES": "Slot starts are rounded up to this grid (default: 15).",
    "ZMANIT_SLOT_HORIZON_DAYS": "How many days ahead to search (default: 14).",
    "ZMANIT_SLOT_MAX_SUGGESTIONS": "Maximum suggestions returned (default: 5).",
    # Cascade / overrun
    "ZMANIT_CASCADE_GAP_MINUTES": "Gap kept between cascaded tasks (default: 5).",
    "ZMANIT_OVERRUN_SOFT_RATIO": "Share of the estimate that triggers the soft warning (default: 0.8).",
    # Polling
    "ZMANIT_TIMER_SYNC_SECONDS": "Shared store poll interval (default: 5).",
    "ZMANIT_IDLE_CHECK_SECONDS": "Idle/overrun watcher interval (default: 60).",
    "ZMANIT_IDLE_THRESHOLD_MINUTES": "Minutes without a running timer before the idle prompt (default: 15).",
    # Alerts
    "ZMANIT_ALERT_MIN_INTERVAL_MINUTES": "Default dedup interval per alert key (default: 5).",
    "ZMANIT_ALERT_HISTORY_MAX": "Alert history size (default: 100).",
    "ZMANIT_ALERT_HISTORY_HOURS": "Alert history age limit (default: 24).",
    # Schedule alerts
    "ZMANIT_SCHEDULE_LEAD_MINUTES": "Warn this many minutes before a timed task starts or its block ends (default: 5).",
    "ZMANIT_OVERDUE_GRACE_MINUTES": "Window after a start time in which a not-started task is reported overdue (default: 15).",
    "ZMANIT_BREAK_INTERVAL_MINUTES": "Continuous timer minutes before a break reminder (default: 90).",
    # Retention
    "ZMANIT_DAY_ORDER_RETENTION_DAYS": "Days a manual day order is kept (default: 7).",
    "ZMANIT_IDLE_LOG_RETENTION_DAYS": "Days the idle log is kept (default: 30).",
}
