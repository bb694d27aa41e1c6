"""
zmanit: scheduling and timer coordination engine.

Components:
- state/: shared key/value store + cross-context change feed
- timer/: single-active-timer coordinator, idle and overrun watchers
- scheduling/: slot suggester, cascade rescheduler, per-day manual order
- alerts/: deduplicating, priority-ordered alert dispatcher
- tasks/: SQLite Task Store collaborator
"""
