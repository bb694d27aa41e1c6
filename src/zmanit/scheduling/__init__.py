"""
Scheduling subsystem.

Components:
- calendar.py: work days/hours, capacity, lunch + HH:MM helpers
- slots.py: stateless slot suggester over a task snapshot
- cascade.py: stateless cascade rescheduler + overrun classification
- day_order.py: manual per-day order kept in the shared store
"""
