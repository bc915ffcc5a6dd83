"""
Routine Tracker — Telegram Bot.

Telegram is the only user interface. Every interaction (onboarding, today's
checklist, status changes, routine management, analytics) flows through
this bot; the bot itself holds no state beyond the conversation in progress.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)
from telegram.helpers import escape_markdown

from src.config import settings
from src.core.errors import ProfileNotFound, TrackerError, ValidationError
from src.core.recurrence import matching_dates, weekday_index
from src.data.models import (
    DailyFrequency,
    IntervalFrequency,
    MonthlyFrequency,
    Profile,
    TaskStatus,
    TaskTemplate,
    TimeSlot,
    WeeklyFrequency,
    parse_frequency,
)
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.core.task_service import DayTaskStats
    from src.data.db import TrackerDB
    from src.data.models import Frequency, TaskInstance

logger = logging.getLogger(__name__)

DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

# Far enough ahead to find three monthly occurrences
PREVIEW_HORIZON_DAYS = 100

_STATUS_ICONS = {
    TaskStatus.PENDING: "⬜",
    TaskStatus.COMPLETED: "✅",
    TaskStatus.SKIPPED: "⏭",
}

_SLOT_LABELS = {
    TimeSlot.PRE_WORK: "Before work",
    TimeSlot.DURING_WORK: "During work",
    TimeSlot.POST_WORK: "After work",
    TimeSlot.ANYTIME: "Anytime",
}


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def describe_frequency(freq: Frequency | None) -> str:
    """Human-readable summary of a frequency rule."""
    if isinstance(freq, DailyFrequency):
        return "every day"
    if isinstance(freq, WeeklyFrequency):
        if freq.days == (1, 2, 3, 4, 5):
            return "weekdays"
        return ", ".join(DAY_NAMES[d] for d in freq.days)
    if isinstance(freq, IntervalFrequency):
        text = "every day" if freq.every_n_days == 1 else f"every {freq.every_n_days} days"
        if freq.anchor_date is not None:
            text += f" from {freq.anchor_date.isoformat()}"
        return text
    if isinstance(freq, MonthlyFrequency):
        return f"monthly on day {freq.day_of_month}"
    return "(invalid rule)"


def md(text: str) -> str:
    """Escape user-supplied text for a legacy Markdown message."""
    return escape_markdown(text, version=1)


def slot_labels(profile: Profile | None = None) -> dict[TimeSlot, str]:
    """Slot names, showing the profile's work hours when there is a profile."""
    if profile is None:
        return dict(_SLOT_LABELS)
    return {
        TimeSlot.PRE_WORK: f"Before work ({profile.work_start})",
        TimeSlot.DURING_WORK: f"During work ({profile.work_start}-{profile.work_end})",
        TimeSlot.POST_WORK: f"After work ({profile.work_end})",
        TimeSlot.ANYTIME: "Anytime",
    }


def format_task_list(
    tasks: list[TaskInstance],
    target_date: date,
    stats: DayTaskStats | None = None,
    labels: dict[TimeSlot, str] | None = None,
) -> str:
    if not tasks:
        return f"No tasks for {target_date.isoformat()}."

    labels = labels or _SLOT_LABELS
    lines = [f"*Tasks for {target_date.isoformat()}:*"]
    current_slot: TimeSlot | None = None
    for task in tasks:
        if task.time_slot is not current_slot:
            current_slot = task.time_slot
            lines.append(f"\n_{labels[current_slot]}_")
        lines.append(f"{_STATUS_ICONS[task.status]} `{task.id}` {md(task.title)}")

    if stats is not None and stats.total > stats.skipped:
        lines.append(
            f"\nProgress: {stats.completed}/{stats.total - stats.skipped} ({stats.progress}%)"
        )
    return "\n".join(lines)


def _heat_cell(total: int, rate: int) -> str:
    if total == 0:
        return "▫️"
    if rate >= 80:
        return "🟩"
    if rate >= 50:
        return "🟨"
    return "🟥"


def parse_frequency_text(text: str, today: date) -> tuple[str, dict[str, Any]] | None:
    """Parse the routine frequency typed in the /addroutine conversation.

    Accepts: "daily", "weekdays", "weekly 1,3,5" (0 = Sunday),
    "every 3" (anchored at today) and "monthly 15".
    """
    text = text.strip().lower()
    if text in ("daily", "every day"):
        return "daily", {}
    if text == "weekdays":
        return "weekly", {}

    match = re.fullmatch(r"weekly\s+([0-6](?:\s*,\s*[0-6])*)", text)
    if match:
        days = [int(d) for d in match.group(1).split(",")]
        return "weekly", {"days": days}

    match = re.fullmatch(r"every\s+(\d+)(?:\s+days?)?", text)
    if match and int(match.group(1)) >= 1:
        return "interval", {"every_n_days": int(match.group(1)), "anchor_date": today.isoformat()}

    match = re.fullmatch(r"monthly\s+(\d{1,2})", text)
    if match and 1 <= int(match.group(1)) <= 31:
        return "monthly", {"day_of_month": int(match.group(1))}

    return None


# ---------------------------------------------------------------------------
# Shared handler helpers
# ---------------------------------------------------------------------------


def _store(context: ContextTypes.DEFAULT_TYPE) -> TrackerDB:
    return context.bot_data["store"]


async def _load_profile(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Profile | None:
    """Return the user's profile, or tell them to run /start and return None."""
    try:
        profile = _store(context).get_profile(update.effective_user.id)
    except StoreError as exc:
        logger.error("Profile lookup failed: %s", exc)
        await update.message.reply_text("Couldn't load your profile. Please try again.")
        return None
    if profile is None:
        await update.message.reply_text("You're not set up yet. Send /start first.")
    return profile


def _find_profile(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Profile | None:
    """Return the user's profile if it can be read, without replying."""
    try:
        return _store(context).get_profile(update.effective_user.id)
    except StoreError as exc:
        logger.warning("Profile lookup failed, using defaults: %s", exc)
        return None


def preview_dates(
    frequency_type: str,
    config: dict[str, Any],
    profile: Profile,
    start: date,
    count: int = 3,
) -> list[date]:
    """The next ``count`` days from ``start`` a new routine would fire on."""
    template = TaskTemplate(
        id=0,
        user_id=profile.user_id,
        title="preview",
        frequency=parse_frequency(frequency_type, config),
        time_slot=TimeSlot.ANYTIME,
    )
    end = start + timedelta(days=PREVIEW_HORIZON_DAYS)
    return matching_dates(template, profile, start, end)[:count]


def _parse_id_arg(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    args = context.args or []
    if not args:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — create the profile on first use, then greet."""
    from src.core.routine_service import complete_onboarding

    user = update.effective_user
    store = _store(context)
    try:
        if store.get_profile(user.id) is None:
            complete_onboarding(
                store,
                user.id,
                display_name=user.first_name or "",
                work_start=settings.DEFAULT_WORK_START,
                work_end=settings.DEFAULT_WORK_END,
                rest_day_index=settings.DEFAULT_REST_DAY,
                strict_mode=False,
                timezone=settings.TIMEZONE,
            )
            logger.info("Onboarded user %d", user.id)
    except (TrackerError, StoreError) as exc:
        logger.error("/start onboarding error: %s", exc)
        await update.message.reply_text("Couldn't set up your profile. Please try again.")
        return

    await update.message.reply_text(
        "Welcome to *Routine Tracker*!\n\n"
        "• /addroutine — create a recurring routine\n"
        "• /today — see today's checklist\n"
        "• /done, /skip, /undo <id> — update a task\n"
        "• /stats — streak and completion trends\n"
        "• /settings — work hours, rest day, strict mode\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/today — Today's tasks (generates them if needed)\n"
        "/done <id> — Mark a task completed\n"
        "/skip <id> — Skip a task (doesn't hurt your rate)\n"
        "/undo <id> — Set a task back to pending\n"
        "/add [slot] <title> — Add a one-off task for today\n"
        "/addroutine — Create a recurring routine\n"
        "/routines — List your routines\n"
        "/pause <id> — Pause or resume a routine\n"
        "/editroutine <id> <field> <value> — Change a routine\n"
        "/deleteroutine <id> — Delete a routine\n"
        "/categories — List categories\n"
        "/addcategory <name> [#color] — Create a category\n"
        "/editcategory <id> name|color <value> — Change a category\n"
        "/deletecategory <id> — Delete a category\n"
        "/stats — Streak, 30-day heatmap and weekly trend\n"
        "/settings — View or change your settings\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — generate today's routine tasks and list them."""
    from src.core.generation import generate_for_date
    from src.core.scheduler import local_today
    from src.core.task_service import get_overdue_tasks, get_task_stats, get_tasks_for_date

    profile = await _load_profile(update, context)
    if profile is None:
        return

    store = _store(context)
    today = local_today(profile.timezone)
    try:
        generate_for_date(store, profile.user_id, today)
        tasks = get_tasks_for_date(store, profile.user_id, today)
        stats = get_task_stats(store, profile.user_id, today)
        overdue = get_overdue_tasks(store, profile.user_id, today)
    except (TrackerError, StoreError) as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't load today's tasks. Please try /today again.")
        return

    text = format_task_list(tasks, today, stats=stats, labels=slot_labels(profile))
    if overdue:
        text += f"\n\n⚠️ {len(overdue)} unfinished task(s) from earlier days."
    await update.message.reply_text(text, parse_mode="Markdown")


async def _change_status(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    status: TaskStatus,
    command: str,
) -> None:
    from src.core.scheduler import local_now
    from src.core.task_service import set_status

    task_id = _parse_id_arg(context)
    if task_id is None:
        await update.message.reply_text(f"Usage: /{command} <task_id>\nUse /today to see IDs.")
        return

    profile = await _load_profile(update, context)
    if profile is None:
        return

    try:
        task = set_status(
            _store(context), profile.user_id, task_id, status, local_now(profile.timezone),
        )
    except TrackerError as exc:
        logger.info("/%s rejected: %s", command, exc)
        await update.message.reply_text(f"Task {task_id} not found. Use /today to see IDs.")
        return
    except StoreError as exc:
        logger.error("/%s error: %s", command, exc)
        await update.message.reply_text(f"Couldn't update task {task_id}. Nothing was changed.")
        return

    await update.message.reply_text(f"{_STATUS_ICONS[task.status]} {task.title}")


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — mark a task completed."""
    await _change_status(update, context, TaskStatus.COMPLETED, "done")


@authorized_only
async def cmd_skip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /skip <id> — skip a task."""
    await _change_status(update, context, TaskStatus.SKIPPED, "skip")


@authorized_only
async def cmd_undo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /undo <id> — put a task back to pending."""
    await _change_status(update, context, TaskStatus.PENDING, "undo")


@authorized_only
async def cmd_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add [slot] <title> — add a one-off task for today."""
    from src.core.scheduler import local_today
    from src.core.task_service import create_adhoc_task

    args = list(context.args or [])
    slot = TimeSlot.ANYTIME
    if args and args[0] in {s.value for s in TimeSlot}:
        slot = TimeSlot(args.pop(0))
    title = " ".join(args)
    if not title:
        await update.message.reply_text(
            "Usage: /add [pre_work|during_work|post_work|anytime] <title>"
        )
        return

    profile = await _load_profile(update, context)
    if profile is None:
        return

    try:
        task = create_adhoc_task(
            _store(context), profile.user_id, title, slot, local_today(profile.timezone),
        )
    except (TrackerError, StoreError) as exc:
        logger.error("/add error: %s", exc)
        await update.message.reply_text(f"Couldn't add the task: {exc}")
        return

    await update.message.reply_text(f"Added `{task.id}` {md(task.title)}", parse_mode="Markdown")


@authorized_only
async def cmd_routines(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /routines — list all routines with their rules."""
    try:
        templates = _store(context).list_templates(update.effective_user.id)
    except StoreError as exc:
        logger.error("/routines error: %s", exc)
        await update.message.reply_text("Couldn't load routines. Please try again.")
        return

    if not templates:
        await update.message.reply_text("No routines yet. Use /addroutine to create one.")
        return

    labels = slot_labels(_find_profile(update, context))
    lines = ["*Your routines:*\n"]
    for t in templates:
        paused = "" if t.is_active else " _(paused)_"
        lines.append(
            f"`{t.id}` — {md(t.title)} ({describe_frequency(t.frequency)}, "
            f"{labels[t.time_slot].lower()}){paused}"
        )
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_pause(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause <id> — toggle a routine between active and paused."""
    from src.core.routine_service import toggle_template

    template_id = _parse_id_arg(context)
    if template_id is None:
        await update.message.reply_text("Usage: /pause <routine_id>\nUse /routines to see IDs.")
        return

    store = _store(context)
    user_id = update.effective_user.id
    try:
        template = store.get_template(user_id, template_id)
        if template is None:
            await update.message.reply_text(f"Routine {template_id} not found.")
            return
        updated = toggle_template(store, user_id, template_id, not template.is_active)
    except (TrackerError, StoreError) as exc:
        logger.error("/pause error: %s", exc)
        await update.message.reply_text("Couldn't change the routine. Please try again.")
        return

    state = "resumed" if updated.is_active else "paused"
    await update.message.reply_text(f"Routine {md(updated.title)} {state}.", parse_mode="Markdown")


@authorized_only
async def cmd_deleteroutine(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deleteroutine <id> — delete a routine, keeping its past tasks."""
    from src.core.routine_service import delete_template

    template_id = _parse_id_arg(context)
    if template_id is None:
        await update.message.reply_text(
            "Usage: /deleteroutine <routine_id>\nUse /routines to see IDs."
        )
        return

    try:
        delete_template(_store(context), update.effective_user.id, template_id)
    except TrackerError:
        await update.message.reply_text(f"Routine {template_id} not found.")
        return
    except StoreError as exc:
        logger.error("/deleteroutine error: %s", exc)
        await update.message.reply_text("Couldn't delete the routine. Please try again.")
        return

    await update.message.reply_text(f"✅ Routine {template_id} deleted. Past tasks are kept.")


@authorized_only
async def cmd_categories(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /categories — list categories."""
    try:
        categories = _store(context).list_categories(update.effective_user.id)
    except StoreError as exc:
        logger.error("/categories error: %s", exc)
        await update.message.reply_text("Couldn't load categories. Please try again.")
        return

    if not categories:
        await update.message.reply_text("No categories.")
        return

    lines = ["*Categories:*\n"] + [f"`{c.id}` — {md(c.name)} {c.color}" for c in categories]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_addcategory(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addcategory <name> [#color] — create a category."""
    from src.core.routine_service import create_category

    args = list(context.args or [])
    color = "#6366f1"
    if len(args) > 1 and args[-1].startswith("#"):
        color = args.pop()
    name = " ".join(args)
    if not name:
        await update.message.reply_text("Usage: /addcategory <name> [#color]")
        return

    try:
        category = create_category(_store(context), update.effective_user.id, name, color)
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("/addcategory error: %s", exc)
        await update.message.reply_text("Couldn't create the category. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Category `{category.id}` {md(category.name)} created.", parse_mode="Markdown",
    )


@authorized_only
async def cmd_editcategory(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /editcategory <id> name|color <value> — rename or recolour a category."""
    from src.core.routine_service import update_category

    args = context.args or []
    category_id = _parse_id_arg(context)
    field = args[1].lower() if len(args) > 1 else ""
    value = " ".join(args[2:])
    if category_id is None or field not in ("name", "color") or not value:
        await update.message.reply_text("Usage: /editcategory <id> name|color <value>")
        return

    try:
        category = update_category(
            _store(context), update.effective_user.id, category_id, **{field: value},
        )
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("/editcategory error: %s", exc)
        await update.message.reply_text("Couldn't change the category. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Category `{category.id}` is now {md(category.name)} {category.color}.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_deletecategory(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletecategory <id> — delete a category, keeping its routines."""
    from src.core.routine_service import delete_category

    category_id = _parse_id_arg(context)
    if category_id is None:
        await update.message.reply_text(
            "Usage: /deletecategory <category_id>\nUse /categories to see IDs."
        )
        return

    try:
        deleted = delete_category(_store(context), update.effective_user.id, category_id)
    except StoreError as exc:
        logger.error("/deletecategory error: %s", exc)
        await update.message.reply_text("Couldn't delete the category. Please try again.")
        return

    if not deleted:
        await update.message.reply_text(f"Category {category_id} not found.")
        return
    await update.message.reply_text(
        f"✅ Category {category_id} deleted. Its routines are now uncategorized."
    )


_EDITROUTINE_USAGE = (
    "Usage:\n"
    "/editroutine <id> title <new title>\n"
    "/editroutine <id> freq daily|weekdays|weekly 1,3|every 3|monthly 15\n"
    "/editroutine <id> slot before|during|after|anytime\n"
    "/editroutine <id> category <category_id>|none\n"
    "/editroutine <id> note <text>"
)


@authorized_only
async def cmd_editroutine(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /editroutine <id> <field> <value> — change one field of a routine."""
    from src.core.routine_service import update_template
    from src.core.scheduler import local_today

    args = context.args or []
    template_id = _parse_id_arg(context)
    field = args[1].lower() if len(args) > 1 else ""
    value = " ".join(args[2:]).strip()
    if template_id is None or not value:
        await update.message.reply_text(_EDITROUTINE_USAGE)
        return

    changes: dict[str, Any]
    if field == "title":
        changes = {"title": value}
    elif field == "note":
        changes = {"description": value}
    elif field == "slot" and value.lower() in _SLOT_CHOICES:
        changes = {"time_slot": _SLOT_CHOICES[value.lower()]}
    elif field == "category" and value.lower() == "none":
        changes = {"category_id": None}
    elif field == "category" and value.isdigit():
        changes = {"category_id": int(value)}
    elif field == "freq":
        profile = _find_profile(update, context)
        parsed = parse_frequency_text(value, local_today(profile.timezone if profile else None))
        if parsed is None:
            await update.message.reply_text(_EDITROUTINE_USAGE)
            return
        changes = {"frequency_type": parsed[0], "frequency_config": parsed[1]}
    else:
        await update.message.reply_text(_EDITROUTINE_USAGE)
        return

    try:
        template = update_template(
            _store(context), update.effective_user.id, template_id, **changes,
        )
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("/editroutine error: %s", exc)
        await update.message.reply_text("Couldn't change the routine. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Routine `{template.id}` {md(template.title)} updated "
        f"({describe_frequency(template.frequency)}).",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — streak, 30-day heatmap and weekly trend."""
    from src.core.analytics import compute_analytics
    from src.core.scheduler import local_today

    profile = await _load_profile(update, context)
    if profile is None:
        return

    try:
        stats = compute_analytics(
            _store(context), profile.user_id, local_today(profile.timezone),
        )
    except (TrackerError, StoreError) as exc:
        logger.error("/stats error: %s", exc)
        await update.message.reply_text("Couldn't compute your stats. Please try again.")
        return

    heatmap_rows = []
    for i in range(0, len(stats.daily_series), 10):
        row = stats.daily_series[i:i + 10]
        heatmap_rows.append("".join(_heat_cell(d.total, d.rate) for d in row))

    weeks = "  ".join(f"{w.label}: {w.rate}%" for w in stats.weekly_series)
    await update.message.reply_text(
        f"🔥 Streak: *{stats.streak}* day(s)\n"
        f"✅ Completed (30 days): {stats.total_completed}\n"
        f"📈 Average rate: {stats.average_rate}%\n\n"
        "*Last 30 days:*\n" + "\n".join(heatmap_rows) + "\n\n"
        f"*Weekly:* {weeks}",
        parse_mode="Markdown",
    )


_SETTINGS_USAGE = (
    "Usage:\n"
    "/settings work 08:30 17:30\n"
    "/settings restday <0-6> (0 = Sunday)\n"
    "/settings strict on|off\n"
    "/settings timezone Asia/Bangkok"
)


@authorized_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settings — show settings, or change one of them."""
    from src.core.routine_service import update_settings

    profile = await _load_profile(update, context)
    if profile is None:
        return

    args = context.args or []
    if not args:
        await update.message.reply_text(
            f"Work hours: {profile.work_start}–{profile.work_end}\n"
            f"Rest day: {DAY_NAMES[profile.rest_day_index]}\n"
            f"Strict mode: {'on' if profile.strict_mode else 'off'}\n"
            f"Timezone: {profile.timezone}\n\n" + _SETTINGS_USAGE
        )
        return

    key, values = args[0].lower(), args[1:]
    if key == "work" and len(values) == 2:
        changes = {"work_start": values[0], "work_end": values[1]}
    elif key == "restday" and len(values) == 1:
        changes = {"rest_day_index": values[0]}
    elif key == "strict" and len(values) == 1:
        changes = {"strict_mode": values[0]}
    elif key == "timezone" and len(values) == 1:
        changes = {"timezone": values[0]}
    else:
        await update.message.reply_text(_SETTINGS_USAGE)
        return

    try:
        update_settings(_store(context), profile.user_id, **changes)
    except ProfileNotFound:
        await update.message.reply_text("You're not set up yet. Send /start first.")
        return
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("/settings error: %s", exc)
        await update.message.reply_text("Couldn't save your settings. Please try again.")
        return

    await update.message.reply_text("✅ Settings updated.")


# ---------------------------------------------------------------------------
# /addroutine conversation
# ---------------------------------------------------------------------------

# ConversationHandler states for /addroutine
(
    ROUTINE_TITLE,
    ROUTINE_FREQ,
    ROUTINE_SLOT,
    ROUTINE_CONFIRM,
) = range(4)

_SLOT_CHOICES = {
    "before": TimeSlot.PRE_WORK,
    "during": TimeSlot.DURING_WORK,
    "after": TimeSlot.POST_WORK,
    "anytime": TimeSlot.ANYTIME,
}


@authorized_only
async def cmd_addroutine(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Entry point of the /addroutine conversation."""
    await update.message.reply_text("What's the routine? (e.g. 'Drink water')\nSend /cancel to stop.")
    return ROUTINE_TITLE


@authorized_only
async def addroutine_title(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    title = update.message.text.strip()
    if not title:
        await update.message.reply_text("Please send a name for the routine.")
        return ROUTINE_TITLE
    context.user_data["routine_title"] = title
    await update.message.reply_text(
        "How often?\n"
        "• daily\n"
        "• weekdays\n"
        "• weekly 1,3,5  (0 = Sunday)\n"
        "• every 3  (every 3 days from today)\n"
        "• monthly 15"
    )
    return ROUTINE_FREQ


@authorized_only
async def addroutine_freq(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    from src.core.scheduler import local_today

    profile = _find_profile(update, context)
    today = local_today(profile.timezone if profile else None)

    parsed = parse_frequency_text(update.message.text, today)
    if parsed is not None:
        try:
            parse_frequency(*parsed)
        except ValidationError as exc:
            logger.info("/addroutine frequency rejected: %s", exc)
            parsed = None
    if parsed is None:
        await update.message.reply_text(
            "I didn't understand that. Try 'daily', 'weekly 1,3,5', 'every 3' or 'monthly 15'."
        )
        return ROUTINE_FREQ
    context.user_data["routine_freq"] = parsed

    labels = slot_labels(profile)
    await update.message.reply_text(
        "When during the day?\n"
        f"• before: {labels[TimeSlot.PRE_WORK]}\n"
        f"• during: {labels[TimeSlot.DURING_WORK]}\n"
        f"• after: {labels[TimeSlot.POST_WORK]}\n"
        "• anytime"
    )
    return ROUTINE_SLOT


@authorized_only
async def addroutine_slot(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    from src.core.scheduler import local_today

    choice = update.message.text.strip().lower().split(" ")[0]
    slot = _SLOT_CHOICES.get(choice)
    if slot is None:
        await update.message.reply_text("Please answer before, during, after or anytime.")
        return ROUTINE_SLOT
    context.user_data["routine_slot"] = slot.value

    frequency_type, config = context.user_data["routine_freq"]
    profile = _find_profile(update, context)
    lines = [
        f"Create routine: {md(context.user_data['routine_title'])}",
        f"({describe_frequency(parse_frequency(frequency_type, config))}, "
        f"{slot_labels(profile)[slot].lower()})",
    ]
    if profile is not None:
        upcoming = preview_dates(frequency_type, config, profile, local_today(profile.timezone))
        if upcoming:
            days = ", ".join(f"{DAY_NAMES[weekday_index(d)]} {d.isoformat()}" for d in upcoming)
            lines.append(f"Next: {days}")
        else:
            lines.append("Next: none in the coming months")
    lines.append("\nyes / no")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")
    return ROUTINE_CONFIRM


@authorized_only
async def addroutine_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    from src.core.routine_service import create_template

    answer = update.message.text.strip().lower()
    if answer not in ("yes", "y"):
        _clear_routine_data(context)
        await update.message.reply_text("Cancelled.")
        return ConversationHandler.END

    frequency_type, config = context.user_data["routine_freq"]
    try:
        template = create_template(
            _store(context),
            update.effective_user.id,
            title=context.user_data["routine_title"],
            frequency_type=frequency_type,
            frequency_config=config,
            time_slot=context.user_data["routine_slot"],
        )
    except (TrackerError, StoreError) as exc:
        logger.error("/addroutine error: %s", exc)
        await update.message.reply_text(f"Couldn't save the routine: {exc}")
        _clear_routine_data(context)
        return ConversationHandler.END

    _clear_routine_data(context)
    await update.message.reply_text(
        f"✅ Routine `{template.id}` {md(template.title)} created "
        f"({describe_frequency(template.frequency)}).",
        parse_mode="Markdown",
    )
    return ConversationHandler.END


async def addroutine_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    _clear_routine_data(context)
    await update.message.reply_text("Cancelled.")
    return ConversationHandler.END


def _clear_routine_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    for key in ("routine_title", "routine_freq", "routine_slot"):
        context.user_data.pop(key, None)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(store: TrackerDB | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Task store. Defaults to a TrackerDB at DATABASE_PATH.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if store is None:
        from src.data.db import TrackerDB
        store = TrackerDB()

    # Store the port in bot_data for handler access
    app.bot_data["store"] = store

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("skip", cmd_skip))
    app.add_handler(CommandHandler("undo", cmd_undo))
    app.add_handler(CommandHandler("add", cmd_add))
    app.add_handler(CommandHandler("routines", cmd_routines))
    app.add_handler(CommandHandler("pause", cmd_pause))
    app.add_handler(CommandHandler("deleteroutine", cmd_deleteroutine))
    app.add_handler(CommandHandler("categories", cmd_categories))
    app.add_handler(CommandHandler("addcategory", cmd_addcategory))
    app.add_handler(CommandHandler("editcategory", cmd_editcategory))
    app.add_handler(CommandHandler("deletecategory", cmd_deletecategory))
    app.add_handler(CommandHandler("editroutine", cmd_editroutine))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CommandHandler("settings", cmd_settings))

    _text = filters.TEXT & ~filters.COMMAND
    addroutine_conv = ConversationHandler(
        entry_points=[CommandHandler("addroutine", cmd_addroutine)],
        states={
            ROUTINE_TITLE: [MessageHandler(_text, addroutine_title)],
            ROUTINE_FREQ: [MessageHandler(_text, addroutine_freq)],
            ROUTINE_SLOT: [MessageHandler(_text, addroutine_slot)],
            ROUTINE_CONFIRM: [MessageHandler(_text, addroutine_confirm)],
        },
        fallbacks=[CommandHandler("cancel", addroutine_cancel)],
    )
    app.add_handler(addroutine_conv)

    _setup_daily_generation(app, store)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_daily_generation(app: Application, store: TrackerDB) -> None:
    """Register the daily task generation job."""
    from src.core.scheduler import run_daily_generation

    tz = ZoneInfo(settings.TIMEZONE)
    run_at = dt_time(
        hour=settings.DAILY_GENERATION_HOUR,
        minute=settings.DAILY_GENERATION_MINUTE,
        tzinfo=tz,
    )

    async def _generation_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        run_daily_generation(store)

    app.job_queue.run_daily(
        _generation_job_callback,
        time=run_at,
        name="daily_generation",
    )

    logger.info(
        "Daily generation scheduled at %02d:%02d %s",
        settings.DAILY_GENERATION_HOUR,
        settings.DAILY_GENERATION_MINUTE,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Routine Tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
