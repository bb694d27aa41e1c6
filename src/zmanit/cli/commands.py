# src/zmanit/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
import re
from collections.abc import Callable
from datetime import date, timedelta
from typing import cast

from ..core.errors import ConflictError, InvalidStateError, StoreUnavailable
from ..core.state import AppState
from ..scheduling.calendar import minutes_to_time
from ..scheduling.cascade import CascadePlan, cascade_reschedule
from ..scheduling.slots import collect_horizon, day_load, suggest_slots
from ..tasks.task_models import DEFAULT_DURATION_MINUTES, TaskPriority, TaskRef

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

_CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except ConflictError as e:
            return (
                f"Task {e.active_task_id} is running. "
                f"Use /switch {e.active_task_id} {e.requested_task_id} to pause it and start {e.requested_task_id}."
            )
        except InvalidStateError as e:
            return f"Cannot do that for task {e.task_id}: {e.reason}."
        except StoreUnavailable:
            logger.warning("Store unavailable while handling /%s", name, exc_info=True)
            return "Storage is unavailable right now. Try again in a moment."
        except ValueError as e:
            return f"{e}. Use /help for usage."

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- parsing helpers ----


def _today(state: AppState) -> date:
    return state.clock.now().date()


def _parse_day(state: AppState, raw: str) -> date | None:
    key = raw.strip().lower()
    if key == "today":
        return _today(state)
    if key == "tomorrow":
        return _today(state) + timedelta(days=1)
    try:
        return date.fromisoformat(key)
    except ValueError:
        return None


def _parse_clock(raw: str) -> str | None:
    m = _CLOCK_RE.match(raw.strip())
    if not m:
        return None
    return f"{int(m.group(1)):02d}:{m.group(2)}"


def _parse_minutes(raw: str, what: str = "minutes") -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{what} must be a whole number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{what} must be positive")
    return value


def _task_or_error(state: AppState, task_id: str) -> TaskRef:
    task = state.task_store.get_task(task_id)
    if task is None:
        raise ValueError(f"Unknown task {task_id}")
    return task


def _active_or_arg(state: AppState, args: list[str]) -> str:
    if args:
        return args[0]
    active = state.coordinator.active_task_id()
    if active is None:
        raise ValueError("No timer is running; give a task id")
    return active


def _fmt_task(task: TaskRef, *, running: bool = False) -> str:
    when = task.due_time or "--:--"
    flags = []
    if running:
        flags.append("running")
    if task.is_completed:
        flags.append("done")
    if task.priority != TaskPriority.NORMAL:
        flags.append(task.priority.value)
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"#{task.id} {when} {task.title} ({task.duration}m){suffix}"


def _fmt_seconds(seconds: int) -> str:
    h, rest = divmod(max(0, seconds), 3600)
    m, s = divmod(rest, 60)
    return f"{h:d}:{m:02d}:{s:02d}"


def _fmt_plan(plan: CascadePlan | None) -> list[str]:
    if plan is None or plan.is_empty:
        return []
    lines = []
    for move in plan.moves:
        lines.append(f"  moved #{move.task_id}: {move.old_time or '--:--'} -> {move.new_time}")
    for cand in plan.overflow:
        lines.append(
            f"  no room today for #{cand.task_id} {cand.title} (would start {cand.proposed_time}); "
            f"use /move {cand.task_id} <date> or /schedule {cand.task_id} <date> <HH:MM>"
        )
    return lines


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    now = state.clock.now()
    view = state.coordinator.view()

    lines = ["Status:"]
    active = view.active
    if active is not None:
        lines.append(f"  Running: task #{active.task_id} ({_fmt_seconds(active.elapsed_seconds(now))})")
    else:
        lines.append("  Running: none")
    for task_id in view.paused_ids:
        record = view.records[task_id]
        lines.append(f"  {record.phase.value.capitalize()}: task #{task_id} ({_fmt_seconds(record.accumulated_seconds)})")

    load = day_load(now.date(), state.task_store.get_tasks_for_date(now.date()), state.calendar)
    lines.append(
        f"  Today: {load.scheduled_minutes}/{state.calendar.capacity_minutes} min planned "
        f"({load.load_percent}%), {load.remaining_minutes} min free"
    )
    idle = state.idle_detector.today_stats()
    lines.append(f"  Idle today: {idle.total_minutes + idle.current_minutes} min")
    work = "in work hours" if state.calendar.in_work_hours(now) else "outside work hours"
    lines.append(f"  Clock: {now.strftime('%Y-%m-%d %H:%M')} ({work})")
    return "\n".join(lines)


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <minutes> <title...>                      -> unscheduled task
    /add <minutes> <date> [HH:MM] <title...>       -> scheduled task
    /add ... !urgent|!high|!low                    -> priority
    """
    if len(args) < 2:
        return "Usage: /add <minutes> [date [HH:MM]] <title...> [!urgent|!high|!low]"

    minutes = _parse_minutes(args[0])
    rest = args[1:]

    due_date = _parse_day(state, rest[0]) if rest else None
    if due_date is not None:
        rest = rest[1:]
    due_time = _parse_clock(rest[0]) if (rest and due_date is not None) else None
    if due_time is not None:
        rest = rest[1:]

    priority = TaskPriority.NORMAL
    words = []
    for word in rest:
        if word.startswith("!") and len(word) > 1:
            priority = TaskPriority.from_db(word[1:])
            continue
        words.append(word)

    title = " ".join(words).strip()
    if not title:
        return "A task needs a title."

    task_id = state.task_store.add_task(
        title=title,
        estimated_duration=minutes,
        due_date=due_date,
        due_time=due_time,
        priority=priority,
    )
    if due_date is not None:
        order = state.day_orders.load(due_date)
        if order:
            state.day_orders.save(due_date, [*order, task_id])
    where = f"{due_date.isoformat()} {due_time or ''}".strip() if due_date else "unscheduled"
    return f"Added #{task_id} {title} ({minutes}m, {where})."


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks                -> today, in manual order
    /tasks <date>         -> that day
    /tasks unscheduled    -> tasks without a date
    """
    if args and args[0].lower() in ("unscheduled", "inbox"):
        tasks = state.task_store.list_unscheduled()
        if not tasks:
            return "No unscheduled tasks."
        return "\n".join(["Unscheduled:", *(f"  {_fmt_task(t)}" for t in tasks)])

    day = _parse_day(state, args[0]) if args else _today(state)
    if day is None:
        return "Usage: /tasks [today|tomorrow|YYYY-MM-DD|unscheduled]"

    tasks = state.task_store.get_tasks_for_date(day)
    if not tasks:
        return f"No tasks on {day.isoformat()}."

    state.day_orders.ensure(day, tasks)
    active = state.coordinator.active_task_id()
    running = [active] if active else []
    ordered = state.day_orders.sort_tasks_by_order(tasks, day, running_ids=running)

    load = day_load(day, tasks, state.calendar)
    lines = [f"{day.isoformat()} ({load.load_percent}% planned, {load.remaining_minutes} min free):"]
    for pos, task in enumerate(ordered, start=1):
        lines.append(f"  {pos}. {_fmt_task(task, running=task.id == active)}")
    return "\n".join(lines)


def cmd_schedule(state: AppState, args: list[str]) -> str:
    """/schedule <task_id> <date> <HH:MM> -> set the start time; later tasks of that day cascade."""
    if len(args) < 3:
        return "Usage: /schedule <task_id> <date> <HH:MM>"

    task = _task_or_error(state, args[0])
    day = _parse_day(state, args[1])
    when = _parse_clock(args[2])
    if day is None or when is None:
        return "Usage: /schedule <task_id> <date> <HH:MM>"

    state.task_store.update_task_schedule(task.id, due_date=day, due_time=when)
    if task.due_date is not None and task.due_date != day:
        state.day_orders.move_between_days(task.id, task.due_date, day)

    tasks = state.task_store.get_tasks_for_date(day)
    plan = cascade_reschedule(tasks, day, task.id, when, state.cascade_options)
    state.coordinator.apply_cascade(plan)

    return "\n".join([f"Scheduled #{task.id} on {day.isoformat()} at {when}.", *_fmt_plan(plan)])


def cmd_suggest(state: AppState, args: list[str]) -> str:
    """/suggest <task_id> | /suggest <minutes>m -> free slots for that duration."""
    if not args:
        return "Usage: /suggest <task_id> | /suggest <minutes>m"

    raw = args[0].lower()
    if raw.endswith("m"):
        duration = _parse_minutes(raw[:-1])
        label = f"{duration} minutes"
    else:
        task = _task_or_error(state, raw)
        duration = task.duration or DEFAULT_DURATION_MINUTES
        label = f"#{task.id} {task.title} ({duration}m)"

    now = state.clock.now()
    horizon = collect_horizon(state.task_store, now.date(), state.slot_options.horizon_days)
    slots = suggest_slots(duration, horizon, now=now, calendar=state.calendar, options=state.slot_options)
    if not slots:
        return f"No free slot for {label} in the next {state.slot_options.horizon_days} days."

    lines = [f"Free slots for {label}:"]
    for i, s in enumerate(slots, start=1):
        lines.append(f"  {i}. {s.label} (day {s.load_percent}% planned, {s.remaining_minutes} min left after)")
    return "\n".join(lines)


def cmd_start(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /start <task_id>"
    task = _task_or_error(state, args[0])
    record = state.coordinator.start_timer(task.id)
    return f"Timer running for task #{record.task_id} ({_fmt_seconds(record.accumulated_seconds)} so far)."


def cmd_switch(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /switch <from_task_id> <to_task_id>"
    target = _task_or_error(state, args[1])
    record = state.coordinator.switch_timer(args[0], target.id)
    return f"Paused #{args[0]}; timer running for task #{record.task_id}."


def cmd_pause(state: AppState, args: list[str]) -> str:
    record = state.coordinator.pause_timer(_active_or_arg(state, args))
    return f"Paused task #{record.task_id} at {_fmt_seconds(record.accumulated_seconds)}."


def cmd_resume(state: AppState, args: list[str]) -> str:
    if args:
        task_id = args[0]
    else:
        paused = state.coordinator.view().paused_ids
        if len(paused) != 1:
            return "Usage: /resume <task_id>"
        task_id = paused[0]
    record = state.coordinator.resume_timer(task_id)
    return f"Resumed task #{record.task_id}."


def cmd_interrupt(state: AppState, args: list[str]) -> str:
    """/interrupt <minutes> [task_id] -> freeze the timer and push today's later tasks."""
    if not args:
        return "Usage: /interrupt <minutes> [task_id]"
    minutes = _parse_minutes(args[0])
    record, plan = state.coordinator.interrupt_timer(_active_or_arg(state, args[1:]), minutes)
    lines = [f"Interrupted task #{record.task_id} for {minutes} min. /resume {record.task_id} when back."]
    return "\n".join([*lines, *_fmt_plan(plan)])


def cmd_stop(state: AppState, args: list[str]) -> str:
    result = state.coordinator.stop_timer(_active_or_arg(state, args))
    lines = [f"Stopped task #{result.task_id}: {result.minutes} min recorded."]
    if result.overran:
        lines.append("  Over the estimate; later tasks were checked for room.")
    return "\n".join([*lines, *_fmt_plan(result.plan)])


def cmd_complete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /complete <task_id>"
    task = _task_or_error(state, args[0])

    lines = []
    record = state.coordinator.get_timer(task.id)
    if record is not None and record.is_running:
        result = state.coordinator.stop_timer(task.id)
        lines.append(f"Stopped timer: {result.minutes} min recorded.")
        lines.extend(_fmt_plan(result.plan))
    else:
        state.coordinator.clear_timer(task.id)

    state.task_store.complete_task(task.id)
    return "\n".join([f"Completed #{task.id} {task.title}.", *lines])


def cmd_order(state: AppState, args: list[str]) -> str:
    """/order <date> <from_pos> <to_pos> -> move a task within the day's list (1-based)."""
    if len(args) < 3:
        return "Usage: /order <date> <from_pos> <to_pos>"
    day = _parse_day(state, args[0])
    if day is None:
        return "Usage: /order <date> <from_pos> <to_pos>"
    src = _parse_minutes(args[1], "position") - 1
    dst = _parse_minutes(args[2], "position") - 1

    state.day_orders.ensure(day, state.task_store.get_tasks_for_date(day))
    try:
        order = state.day_orders.reorder(day, src, dst)
    except IndexError as e:
        return str(e)
    return f"New order for {day.isoformat()}: " + ", ".join(f"#{x}" for x in order)


def cmd_move(state: AppState, args: list[str]) -> str:
    """/move <task_id> <date> [position] -> move a task to another day."""
    if len(args) < 2:
        return "Usage: /move <task_id> <date> [position]"
    task = _task_or_error(state, args[0])
    day = _parse_day(state, args[1])
    if day is None:
        return "Usage: /move <task_id> <date> [position]"
    index = _parse_minutes(args[2], "position") - 1 if len(args) > 2 else None

    state.task_store.update_task_schedule(task.id, due_date=day)
    if task.due_date is not None:
        state.day_orders.move_between_days(task.id, task.due_date, day, index)
    else:
        target = state.day_orders.load(day)
        if index is None or index >= len(target):
            target.append(task.id)
        else:
            target.insert(index, task.id)
        state.day_orders.save(day, target)
    return f"Moved #{task.id} to {day.isoformat()}."


def cmd_idle(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /idle      -> today's idle time and the learned daily buffer
    /idle ack  -> acknowledge the idle prompt (re-arms the idle alert)
    """
    detector = state.idle_detector
    if args and args[0].lower() in ("ack", "ok"):
        detector.acknowledge()
        if emit:
            with contextlib.suppress(Exception):
                emit("[IDLE] Acknowledged.")
        return "Idle prompt acknowledged."

    stats = detector.today_stats()
    lines = [f"Idle on {stats.date.isoformat()}: {stats.total_minutes} min logged in {len(stats.periods)} period(s)."]
    for p in stats.periods:
        lines.append(f"  {p.start.strftime('%H:%M')}-{p.end.strftime('%H:%M')} ({p.minutes} min)")
    if stats.current_minutes:
        lines.append(f"  idle now for {stats.current_minutes} min")
    buffer = detector.learned_daily_buffer()
    lines.append(f"Learned daily buffer: {buffer} min ({minutes_to_time(buffer)})")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Running timer, today's load and idle time.")
registry.register("add", cmd_add, help_text="Add a task: /add <minutes> [date [HH:MM]] <title> [!priority].")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [date|unscheduled].", aliases=["ls"])
registry.register("schedule", cmd_schedule, help_text="Set a start time: /schedule <id> <date> <HH:MM>.")
registry.register("suggest", cmd_suggest, help_text="Find free slots: /suggest <id> | /suggest <minutes>m.")
registry.register("start", cmd_start, help_text="Start a timer: /start <id>.")
registry.register("switch", cmd_switch, help_text="Pause one timer and start another: /switch <from> <to>.")
registry.register("pause", cmd_pause, help_text="Pause a timer: /pause [id].")
registry.register("resume", cmd_resume, help_text="Resume a paused/interrupted timer: /resume [id].")
registry.register("interrupt", cmd_interrupt, help_text="Report an interruption: /interrupt <minutes> [id].")
registry.register("stop", cmd_stop, help_text="Stop a timer and record time: /stop [id].")
registry.register("complete", cmd_complete, help_text="Complete a task: /complete <id>.", aliases=["done"])
registry.register("order", cmd_order, help_text="Reorder a day: /order <date> <from_pos> <to_pos>.")
registry.register("move", cmd_move, help_text="Move a task to another day: /move <id> <date> [pos].")
registry.register("idle", cmd_idle, help_text="Idle stats: /idle | /idle ack.")
registry.register("exit", cmd_help, help_text="Quit the console.", aliases=["quit"])
