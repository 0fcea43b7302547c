#!/usr/bin/env python3
"""
Microsoft To Do to Super Productivity Converter

Converts Microsoft To Do exports (Graph API task lists and tasks) to
Super Productivity-compatible JSON import files, preserving lists, tags,
subtasks, reminders and repeating tasks.

Licensed under the MIT License. See LICENSE file for details.

Super Productivity: https://github.com/johannesjo/super-productivity

Usage:
    python ms_todo_to_sp.py todo_export.json
    python ms_todo_to_sp.py todo_export.json -o my_import.json --validate

Field Mappings:
    Microsoft To Do            Super Productivity        Transformation
    --------------------------------------------------------------------------
    task.title                 task.title                Trimmed, blank -> skipped
    task.body.content          task.notes                Omitted when blank
    task.status                task.isDone               "completed" -> true
    task.createdDateTime       task.created              ISO to Unix ms
    task.lastModifiedDateTime  task.updated              ISO to Unix ms
    task.completedDateTime     task.doneOn               ISO to Unix ms
    task.dueDateTime           task.dueDay               Midnight -> "YYYY-MM-DD"
                               task.dueWithTime          Otherwise ISO to Unix ms
    task.reminderDateTime      reminder.remindAt         Only when isReminderOn
    task.importance            tag "Important"           "high" -> tagged
    task.categories            task.tagIds               One tag per category
    #hashtags in title         task.tagIds               One tag per hashtag
    task.recurrence            taskRepeatCfg             See translate_recurrence
    task.checklistItems        subtasks                  One task per item
    list.displayName           project.title             Direct copy
"""

import argparse
import calendar
import json
import re
import sys
import uuid
import warnings
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional, TypeVar


CROSS_MODEL_VERSION = 4.4

DONE_STATUS = "completed"
HIGH_IMPORTANCE = "high"
IMPORTANT_TAG_TITLE = "Important"

TODAY_TAG_ID = "TODAY"
TODAY_TAG_TITLE = "Today"

PROJECT_FOLDER_NAME = "Microsoft To Do"
TAG_FOLDER_NAME = "Microsoft To Do Tags"
UNTITLED_LIST_TITLE = "Untitled List"

# Due times earlier than this many seconds after midnight are treated as date-only
DATE_ONLY_THRESHOLD_SECONDS = 60

# Index matches date.weekday()
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WORKDAYS = frozenset(WEEKDAYS[:5])

REPEAT_CYCLES = {
    "daily": "DAILY",
    "weekly": "WEEKLY",
    "absoluteMonthly": "MONTHLY",
    "relativeMonthly": "MONTHLY",
    "absoluteYearly": "YEARLY",
    "relativeYearly": "YEARLY",
    "hourly": "DAILY",
}
RELATIVE_PATTERNS = frozenset({"relativeMonthly", "relativeYearly"})
ANCHORED_CYCLES = frozenset({"MONTHLY", "YEARLY"})

HASHTAG_PATTERN = re.compile(r"(?<!\w)#(\w+)")
_FRACTION_PATTERN = re.compile(r"\.(\d+)")

PROJECT_THEME = {
    "primary": "#2564cf",  # Microsoft To Do blue
    "isAutoContrast": True,
}
TAG_THEME = {
    "primary": "#a05db1",
    "isAutoContrast": True,
}
TODAY_TAG_THEME = {
    "primary": "#6495ED",
    "isAutoContrast": True,
}

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

T = TypeVar("T")


class ConversionWarning(UserWarning):
    """A value could not be converted and a documented fallback was used."""


class LossyConversionWarning(ConversionWarning):
    """The destination model cannot express a source recurrence exactly."""


class UnsupportedInputError(ValueError):
    """Raised when the input matches neither supported export shape."""


# ============================================================================
# Utility Functions
# ============================================================================

def generate_uuid() -> str:
    """Generate a new UUID for entity IDs."""
    return str(uuid.uuid4())


def parse_or_default(value: Any, parser: Callable[[Any], Optional[T]], default: T) -> T:
    """
    Parse an optional source value, falling back to a default.

    The default is used when the value is absent or empty, and when the
    parser rejects it (parsers return None on failure).

    Args:
        value: Raw source value
        parser: Callable returning the parsed value or None
        default: Value to use when parsing is not possible

    Returns:
        Parsed value or default
    """
    if value is None or value == "":
        return default
    result = parser(value)
    return default if result is None else result


def _datetime_string(value: Any) -> Optional[str]:
    # Graph datetimes are either plain strings or {"dateTime", "timeZone"} objects
    if isinstance(value, dict):
        value = value.get('dateTime')
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_iso_to_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 string or Graph dateTime object to an aware datetime.

    Values without an offset are interpreted as UTC. Fractional seconds of
    any length are accepted (Graph emits seven digits).

    Returns:
        Timezone-aware datetime, or None if parsing fails
    """
    iso_string = _datetime_string(value)
    if iso_string is None:
        return None

    normalized = iso_string.replace('Z', '+00:00')
    normalized = _FRACTION_PATTERN.sub(
        lambda m: '.' + m.group(1)[:6].ljust(6, '0'), normalized, count=1
    )
    try:
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        # Must be representable in UTC for timestamp conversions
        dt.astimezone(timezone.utc)
    except (ValueError, OverflowError) as e:
        warnings.warn(f"Failed to parse timestamp '{iso_string}': {e}", ConversionWarning)
        return None

    return dt


def parse_iso_to_unix_ms(value: Any) -> Optional[int]:
    """
    Convert an ISO 8601 timestamp to Unix milliseconds.

    Args:
        value: ISO 8601 string (e.g., "2024-03-01T10:15:00.0000000Z") or
            Graph dateTime object

    Returns:
        Unix timestamp in milliseconds, or None if parsing fails
    """
    dt = parse_iso_to_datetime(value)
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


def parse_iso_to_date_string(value: Any) -> Optional[str]:
    """Extract the calendar date ("YYYY-MM-DD") of an ISO 8601 timestamp."""
    dt = parse_iso_to_datetime(value)
    if dt is None:
        return None
    return dt.date().isoformat()


def unix_ms_to_date(timestamp_ms: int) -> date:
    """UTC calendar date of a Unix millisecond timestamp."""
    return (UNIX_EPOCH + timedelta(milliseconds=timestamp_ms)).date()


def sanitize_title(title: Any) -> Optional[str]:
    """Return the trimmed title, or None when it is missing or blank."""
    if not isinstance(title, str) or not title.strip():
        return None
    return title.strip()


def _positive_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number > 0 else None


# ============================================================================
# Input Normalization
# ============================================================================

def _task_sequence(tasks: Any, list_title: str) -> list[dict]:
    if tasks is None:
        return []
    if not isinstance(tasks, list):
        warnings.warn(f"Tasks of list '{list_title}' are not a list; list imported empty", ConversionWarning)
        return []

    valid = [mtask for mtask in tasks if isinstance(mtask, dict)]
    if len(valid) != len(tasks):
        warnings.warn(
            f"Skipped {len(tasks) - len(valid)} malformed task(s) in list '{list_title}'",
            ConversionWarning,
        )
    return valid


def _pair_lists(lists: list, tasks_by_list: Optional[dict]) -> list[tuple[dict, list[dict]]]:
    task_groups = []
    for mlist in lists:
        if not isinstance(mlist, dict):
            raise UnsupportedInputError(f"Expected a task list object, got {type(mlist).__name__}")
        list_title = mlist.get('displayName', '')
        if tasks_by_list is None:
            tasks = mlist.get('tasks')
        else:
            list_id = mlist.get('id')
            tasks = tasks_by_list.get(list_id) if isinstance(list_id, (str, int)) else None
        task_groups.append((mlist, _task_sequence(tasks, list_title)))
    return task_groups


def normalize_input(data: Any) -> list[tuple[dict, list[dict]]]:
    """
    Normalize both supported export shapes to (list, tasks) pairs.

    Supported shapes:
        - A list of task list objects, each embedding its tasks under "tasks",
          either bare or wrapped as {"lists": [...]} / {"value": [...]}
        - Lists plus a mapping from list ID to tasks, either as
          {"lists": [...], "tasks": {list_id: [...]}} or a (lists, mapping) pair

    Raises:
        UnsupportedInputError: If the data matches neither shape
    """
    if isinstance(data, tuple) and len(data) == 2:
        lists, tasks_by_list = data
        if isinstance(lists, list) and isinstance(tasks_by_list, dict):
            return _pair_lists(lists, tasks_by_list)
    elif isinstance(data, list):
        return _pair_lists(data, None)
    elif isinstance(data, dict):
        lists = data.get('lists', data.get('value'))
        if isinstance(lists, list):
            tasks_by_list = data.get('tasks')
            if tasks_by_list is None:
                return _pair_lists(lists, None)
            if isinstance(tasks_by_list, dict):
                return _pair_lists(lists, tasks_by_list)

    raise UnsupportedInputError(
        "Input is not a Microsoft To Do export (expected a list of task lists, "
        "or task lists with a list-ID-to-tasks mapping)"
    )


# ============================================================================
# Conversion State
# ============================================================================

class ConversionContext:
    """Mutable state threaded through the tag discovery and entity passes."""

    def __init__(self, now_ms: int):
        # One timestamp for the whole run, used for every fallback
        self.now_ms = now_ms
        self.tag_ids_by_key: dict[str, str] = {}
        self.tags: dict[str, dict] = {}
        self.projects: dict[str, dict] = {}
        self.tasks: dict[str, dict] = {}
        self.repeat_cfgs: dict[str, dict] = {}
        self.reminders: list[dict] = []
        self._repeat_cfg_counter = 0

    def next_repeat_cfg_order(self) -> int:
        order = self._repeat_cfg_counter
        self._repeat_cfg_counter += 1
        return order


# ============================================================================
# Relationships
# ============================================================================

def link_task_to_project(task: dict, project: dict) -> None:
    """Assign a top-level task to a project and list it there."""
    task['projectId'] = project['id']
    project['taskIds'].append(task['id'])


def link_task_to_tag(task: dict, tag: dict) -> None:
    """
    Tag a task and record the task on the tag.

    Callers pass each (task, tag) pair once; see resolve_task_tags.
    """
    if tag['id'] not in task['tagIds']:
        task['tagIds'].append(tag['id'])
    tag['taskIds'].append(task['id'])


def link_subtask_to_parent(subtask: dict, parent: dict) -> None:
    """Attach a subtask to its parent; subtasks share the parent's project."""
    subtask['parentId'] = parent['id']
    subtask['projectId'] = parent['projectId']
    parent['subTaskIds'].append(subtask['id'])


# ============================================================================
# Tags
# ============================================================================

def _tag_key(name: str) -> str:
    return name.strip().casefold()


def _is_important(mtask: dict) -> bool:
    return str(mtask.get('importance') or '').lower() == HIGH_IMPORTANCE


def _category_names(mtask: dict) -> list[str]:
    categories = mtask.get('categories')
    if not isinstance(categories, list):
        return []
    return [c.strip() for c in categories if isinstance(c, str) and c.strip()]


def extract_hashtags(title: Any) -> list[str]:
    """Return the words tagged with '#' in a title, in order of appearance."""
    if not isinstance(title, str):
        return []
    return HASHTAG_PATTERN.findall(title)


def create_tag(title: str, now_ms: int) -> dict:
    """Create a Super Productivity tag with no tasks yet."""
    return {
        "id": generate_uuid(),
        "title": title,
        "taskIds": [],
        "created": now_ms,
        "updated": now_ms,
        "icon": None,
        "color": None,
        "theme": dict(TAG_THEME),
        "advancedCfg": {"worklogExportSettings": {"cols": ["DATE", "TITLES_INCLUDING_SUB"]}},
    }


def create_today_tag(now_ms: int) -> dict:
    """Create the built-in Today tag Super Productivity always expects."""
    tag = create_tag(TODAY_TAG_TITLE, now_ms)
    tag.update({
        "id": TODAY_TAG_ID,
        "icon": "wb_sunny",
        "theme": dict(TODAY_TAG_THEME),
    })
    return tag


def _register_tag_name(name: str, ctx: ConversionContext) -> None:
    key = _tag_key(name)
    if not key or key in ctx.tag_ids_by_key:
        return
    tag = create_tag(name.strip(), ctx.now_ms)
    ctx.tag_ids_by_key[key] = tag['id']
    ctx.tags[tag['id']] = tag


def build_tag_registry(
    task_groups: list[tuple[dict, list[dict]]],
    ctx: ConversionContext
) -> dict[str, str]:
    """
    First pass: discover every tag before any task is converted.

    Tag names come from the importance flag ("Important"), task categories
    and #hashtags in task titles. Names are deduplicated case-insensitively;
    the first spelling encountered becomes the tag title. A name matching
    "Today" resolves to the built-in Today tag.

    Args:
        task_groups: Normalized (list, tasks) pairs
        ctx: Conversion context receiving the tags

    Returns:
        Mapping from case-folded tag name to tag ID
    """
    ctx.tags[TODAY_TAG_ID] = create_today_tag(ctx.now_ms)
    ctx.tag_ids_by_key[_tag_key(TODAY_TAG_TITLE)] = TODAY_TAG_ID

    mtasks = [mtask for _, group in task_groups for mtask in group]

    if any(_is_important(mtask) for mtask in mtasks):
        _register_tag_name(IMPORTANT_TAG_TITLE, ctx)

    for mtask in mtasks:
        for category in _category_names(mtask):
            _register_tag_name(category, ctx)
        for hashtag in extract_hashtags(mtask.get('title')):
            _register_tag_name(hashtag, ctx)

    return ctx.tag_ids_by_key


def sorted_tag_ids(ctx: ConversionContext) -> list[str]:
    """Discovered tags alphabetically (case-insensitive), Today tag last."""
    discovered = [tag_id for tag_id in ctx.tags if tag_id != TODAY_TAG_ID]
    discovered.sort(key=lambda tag_id: (_tag_key(ctx.tags[tag_id]['title']), ctx.tags[tag_id]['title']))
    return discovered + [TODAY_TAG_ID]


def resolve_task_tags(mtask: dict, ctx: ConversionContext) -> list[str]:
    """
    Tag IDs of a single task: importance, then categories, then hashtags.

    Duplicates are dropped, keeping the first occurrence.
    """
    names = []
    if _is_important(mtask):
        names.append(IMPORTANT_TAG_TITLE)
    names.extend(_category_names(mtask))
    names.extend(extract_hashtags(mtask.get('title')))

    tag_ids: list[str] = []
    for name in names:
        tag_id = ctx.tag_ids_by_key.get(_tag_key(name))
        if tag_id and tag_id not in tag_ids:
            tag_ids.append(tag_id)
    return tag_ids


# ============================================================================
# Recurrence
# ============================================================================

def _clamp_interval(interval: Any) -> int:
    return _positive_int(interval) or 1


def resolve_weekdays(days_of_week: Any, created_date: date) -> list[str]:
    """
    Weekdays a weekly recurrence repeats on.

    Uses the explicit day list when it names valid days, otherwise the
    weekday of the task's creation date.
    """
    explicit = []
    if isinstance(days_of_week, list):
        for day in days_of_week:
            name = str(day).lower()
            if name in WEEKDAYS and name not in explicit:
                explicit.append(name)
    if explicit:
        return explicit
    return [WEEKDAYS[created_date.weekday()]]


def resolve_anchor_date(
    cycle: str,
    due_date: Optional[date],
    day_of_month: Any,
    created_date: date
) -> str:
    """
    Start date a monthly or yearly recurrence is pinned to.

    Priority:
        1. Calendar date of the task's due date
        2. Monthly only: day of month in the creation month, clamped to
           the last day of that month
        3. Creation date
    """
    if due_date is not None:
        return due_date.isoformat()

    if cycle == "MONTHLY":
        day = _positive_int(day_of_month)
        if day is not None:
            last_day = calendar.monthrange(created_date.year, created_date.month)[1]
            return created_date.replace(day=min(day, last_day)).isoformat()

    return created_date.isoformat()


def classify_quick_setting(cycle: str, repeat_every: int, weekdays: dict[str, bool]) -> str:
    """Map a resolved cycle/interval/weekday combination to a quick setting."""
    if repeat_every != 1:
        return "CUSTOM"
    if cycle == "DAILY":
        return "DAILY"
    if cycle == "WEEKLY":
        active = {day for day, is_on in weekdays.items() if is_on}
        if len(active) == 1:
            return "WEEKLY_CURRENT_WEEKDAY"
        if active == WORKDAYS:
            return "MONDAY_TO_FRIDAY"
        return "CUSTOM"
    if cycle == "MONTHLY":
        return "MONTHLY_CURRENT_DATE"
    if cycle == "YEARLY":
        return "YEARLY_CURRENT_DATE"
    return "CUSTOM"


def translate_recurrence(
    pattern_type: Any,
    interval: Any,
    days_of_week: Any,
    day_of_month: Any,
    due_date: Optional[date],
    created_date: date
) -> Optional[dict]:
    """
    Translate a Microsoft To Do recurrence pattern to repeat config fields.

    Hourly patterns become daily ones and relative monthly/yearly patterns
    lose their "Nth weekday" rule; both emit a LossyConversionWarning.

    Args:
        pattern_type: Graph recurrence pattern type (e.g., "weekly")
        interval: Repeat interval, clamped to at least 1
        days_of_week: Optional weekday names for weekly patterns
        day_of_month: Optional day of month for monthly patterns
        due_date: Calendar date of the task's due date, if any
        created_date: Calendar date the task was created

    Returns:
        Dict with repeatCycle, repeatEvery, monday..sunday, startDate
        (monthly/yearly only) and quickSetting, or None if the pattern type
        is not supported
    """
    if not isinstance(pattern_type, str):
        return None
    cycle = REPEAT_CYCLES.get(pattern_type)
    if cycle is None:
        return None

    repeat_every = _clamp_interval(interval)
    if pattern_type == "hourly":
        warnings.warn(
            f"Hourly recurrence (every {repeat_every} hour(s)) has no Super Productivity "
            "equivalent; converted to daily",
            LossyConversionWarning,
        )
        repeat_every = 1
    elif pattern_type in RELATIVE_PATTERNS:
        warnings.warn(
            f"'{pattern_type}' recurrence loses its weekday-of-month rule; "
            f"converted to a plain {cycle.lower()} repeat by date",
            LossyConversionWarning,
        )

    weekdays = {day: False for day in WEEKDAYS}
    if cycle == "WEEKLY":
        for day in resolve_weekdays(days_of_week, created_date):
            weekdays[day] = True

    descriptor: dict[str, Any] = {"repeatCycle": cycle, "repeatEvery": repeat_every}
    descriptor.update(weekdays)
    if cycle in ANCHORED_CYCLES:
        descriptor['startDate'] = resolve_anchor_date(cycle, due_date, day_of_month, created_date)
    descriptor['quickSetting'] = classify_quick_setting(cycle, repeat_every, weekdays)
    return descriptor


def create_repeat_cfg(task: dict, descriptor: dict, ctx: ConversionContext) -> dict:
    """
    Create a repeat config for a task from a translated recurrence.

    The config snapshots the task's title, notes and tags. The task itself
    counts as today's instance so no duplicate is generated on import.
    """
    cfg = {
        "id": generate_uuid(),
        "projectId": task['projectId'],
        "title": task['title'],
        "tagIds": list(task['tagIds']),
        "isPaused": False,
        "order": ctx.next_repeat_cfg_order(),
        "lastTaskCreation": ctx.now_ms,
        "lastTaskCreationDay": unix_ms_to_date(ctx.now_ms).isoformat(),
        "defaultEstimate": 0,
        "subTaskTemplates": [],
    }
    cfg.update(descriptor)
    if 'notes' in task:
        cfg['notes'] = task['notes']

    ctx.repeat_cfgs[cfg['id']] = cfg
    task['repeatCfgId'] = cfg['id']
    return cfg


# ============================================================================
# Task Conversion
# ============================================================================

def _notes_from_body(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        body = body.get('content')
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


def _new_task(title: str, is_done: bool, created: int, updated: int) -> dict:
    return {
        "id": generate_uuid(),
        "title": title,
        "isDone": is_done,
        "created": created,
        "updated": updated,
        "tagIds": [],
        "subTaskIds": [],
        "timeSpent": 0,
        "timeEstimate": 0,
        "timeSpentOnDay": {},
        "attachments": [],
        "hasPlannedTime": False,
    }


def apply_due_date(task: dict, due: Optional[datetime]) -> None:
    """
    Set either dueDay or dueWithTime from a parsed due datetime.

    A due time within the first minute of the day means "date only".
    """
    if due is not None:
        seconds_into_day = due.hour * 3600 + due.minute * 60 + due.second
        if seconds_into_day < DATE_ONLY_THRESHOLD_SECONDS:
            task['dueDay'] = due.date().isoformat()
        else:
            task['dueWithTime'] = int(due.timestamp() * 1000)

    task['hasPlannedTime'] = ('dueDay' in task) != ('dueWithTime' in task)


def create_reminder(task: dict, remind_at: int, ctx: ConversionContext) -> dict:
    """Create a task reminder and reference it from the task."""
    reminder = {
        "id": generate_uuid(),
        "remindAt": remind_at,
        "title": task['title'],
        "type": "TASK",
        "relatedId": task['id'],
    }
    ctx.reminders.append(reminder)
    task['reminderId'] = reminder['id']
    task['remindAt'] = remind_at
    return reminder


def convert_checklist_item(item: Any, parent: dict, ctx: ConversionContext) -> Optional[dict]:
    """
    Convert a checklist item to a subtask of the given parent task.

    Returns:
        Subtask dictionary, or None if the item has no label
    """
    if not isinstance(item, dict):
        return None
    title = sanitize_title(item.get('displayName'))
    if title is None:
        return None

    created = parse_or_default(item.get('createdDateTime'), parse_iso_to_unix_ms, ctx.now_ms)
    is_done = item.get('isChecked') is True
    subtask = _new_task(title, is_done, created, created)
    if is_done:
        subtask['doneOn'] = parse_or_default(item.get('checkedDateTime'), parse_iso_to_unix_ms, created)

    ctx.tasks[subtask['id']] = subtask
    link_subtask_to_parent(subtask, parent)
    return subtask


def _convert_recurrence(
    mtask: dict,
    task: dict,
    due: Optional[datetime],
    ctx: ConversionContext
) -> None:
    recurrence = mtask.get('recurrence')
    if recurrence is None:
        return
    pattern = recurrence.get('pattern') if isinstance(recurrence, dict) else None
    if not isinstance(pattern, dict):
        warnings.warn(
            f"Malformed recurrence on task '{task['title']}'; imported as a one-time task",
            ConversionWarning,
        )
        return

    descriptor = translate_recurrence(
        pattern.get('type'),
        pattern.get('interval'),
        pattern.get('daysOfWeek'),
        pattern.get('dayOfMonth'),
        due.date() if due is not None else None,
        unix_ms_to_date(task['created']),
    )
    if descriptor is None:
        warnings.warn(
            f"Unsupported recurrence type '{pattern.get('type')}' on task '{task['title']}'; "
            "imported as a one-time task",
            ConversionWarning,
        )
        return
    create_repeat_cfg(task, descriptor, ctx)


def convert_task(mtask: dict, project_id: str, ctx: ConversionContext) -> Optional[dict]:
    """
    Convert a Microsoft To Do task to Super Productivity task format.

    Creates the task's subtasks, reminder and repeat config as well, and
    links the task to its project and tags.

    Args:
        mtask: Microsoft To Do task dictionary
        project_id: ID of an already registered project
        ctx: Conversion context (tag registry must be built)

    Returns:
        Super Productivity task dictionary, or None if the task has no title
    """
    title = sanitize_title(mtask.get('title'))
    if title is None:
        return None

    created = parse_or_default(mtask.get('createdDateTime'), parse_iso_to_unix_ms, ctx.now_ms)
    updated = parse_or_default(mtask.get('lastModifiedDateTime'), parse_iso_to_unix_ms, ctx.now_ms)
    is_done = mtask.get('status') == DONE_STATUS

    task = _new_task(title, is_done, created, updated)
    if is_done:
        task['doneOn'] = parse_or_default(mtask.get('completedDateTime'), parse_iso_to_unix_ms, updated)

    due = parse_or_default(mtask.get('dueDateTime'), parse_iso_to_datetime, None)
    apply_due_date(task, due)

    notes = _notes_from_body(mtask.get('body'))
    if notes is not None:
        task['notes'] = notes

    ctx.tasks[task['id']] = task
    link_task_to_project(task, ctx.projects[project_id])

    for tag_id in resolve_task_tags(mtask, ctx):
        link_task_to_tag(task, ctx.tags[tag_id])

    if mtask.get('isReminderOn') is True:
        remind_at = parse_or_default(mtask.get('reminderDateTime'), parse_iso_to_unix_ms, None)
        if remind_at is not None:
            create_reminder(task, remind_at, ctx)

    # Completed tasks are imported as plain finished tasks
    if not is_done:
        _convert_recurrence(mtask, task, due, ctx)

    checklist = mtask.get('checklistItems')
    if isinstance(checklist, list):
        for item in checklist:
            convert_checklist_item(item, task, ctx)

    return task


# ============================================================================
# Project Conversion
# ============================================================================

def create_project(title: Any) -> dict:
    """Create an empty Super Productivity project."""
    return {
        "id": generate_uuid(),
        "title": sanitize_title(title) or UNTITLED_LIST_TITLE,
        "taskIds": [],
        "backlogTaskIds": [],
        "noteIds": [],
        "theme": dict(PROJECT_THEME),
        "isArchived": False,
        "isEnableBacklog": False,
        "isHiddenFromMenu": False,
        "icon": None,
        "advancedCfg": {"worklogExportSettings": {"cols": ["DATE", "TITLES_INCLUDING_SUB"]}},
    }


def convert_task_list(mlist: dict, mtasks: list[dict], ctx: ConversionContext) -> dict:
    """
    Convert a Microsoft To Do list and its tasks to a project.

    Args:
        mlist: Microsoft To Do list dictionary
        mtasks: Tasks of the list, in source order
        ctx: Conversion context

    Returns:
        Project dictionary
    """
    project = create_project(mlist.get('displayName', mlist.get('title')))
    ctx.projects[project['id']] = project

    for mtask in mtasks:
        convert_task(mtask, project['id'], ctx)

    return project


# ============================================================================
# Menu Trees
# ============================================================================

def _folder_node(name: str, children: list[dict]) -> dict:
    return {
        "k": "f",
        "id": generate_uuid(),
        "name": name,
        "isExpanded": True,
        "children": children,
    }


def build_project_tree(project_ids: list[str]) -> list[dict]:
    """One folder holding every converted project, in creation order."""
    if not project_ids:
        return []
    return [_folder_node(PROJECT_FOLDER_NAME, [{"k": "p", "id": pid} for pid in project_ids])]


def build_tag_tree(tag_ids: list[str]) -> list[dict]:
    """Today tag first, then one folder holding the converted tags."""
    leaves = [{"k": "t", "id": tag_id} for tag_id in tag_ids if tag_id != TODAY_TAG_ID]
    if not leaves:
        return []
    return [{"k": "t", "id": TODAY_TAG_ID}, _folder_node(TAG_FOLDER_NAME, leaves)]


# ============================================================================
# Full Conversion
# ============================================================================

def create_empty_sp_data(now_ms: int) -> dict:
    """
    Create an empty Super Productivity data structure with defaults.

    Returns data in CompleteBackup format:
    {
        timestamp: number,
        lastUpdate: number,
        crossModelVersion: number,
        data: { ...all model data... }
    }
    """
    def empty_entities() -> dict:
        return {"ids": [], "entities": {}}

    def empty_archive() -> dict:
        return {
            "task": empty_entities(),
            "timeTracking": {"project": {}, "tag": {}},
            "lastTimeTrackingFlush": 0,
        }

    data = {
        "project": empty_entities(),
        "task": {
            "ids": [],
            "entities": {},
            "currentTaskId": None,
            "selectedTaskId": None,
            "taskDetailTargetPanel": None,
            "lastCurrentTaskId": None,
            "isDataLoaded": True,
        },
        "tag": empty_entities(),
        "taskRepeatCfg": empty_entities(),
        "reminders": [],
        "menuTree": {"projectTree": [], "tagTree": []},
        "globalConfig": create_default_global_config(),
        "planner": {"days": {}},
        "boards": {"boardCfgs": []},
        "note": {"ids": [], "entities": {}, "todayOrder": []},
        "issueProvider": empty_entities(),
        "metric": empty_entities(),
        "simpleCounter": empty_entities(),
        "timeTracking": {"project": {}, "tag": {}},
        "archiveYoung": empty_archive(),
        "archiveOld": empty_archive(),
        "pluginUserData": [],
        "pluginMetadata": [],
    }

    return {
        "timestamp": now_ms,
        "lastUpdate": now_ms,
        "crossModelVersion": CROSS_MODEL_VERSION,
        "data": data,
    }


def create_default_global_config() -> dict:
    """Minimal global configuration; Super Productivity fills in the rest."""
    minute = 60 * 1000

    return {
        "localization": {
            "lng": None,
            "dateTimeLocale": None,
            "firstDayOfWeek": None,
        },
        "misc": {
            "isConfirmBeforeExit": False,
            "isAutMarkParentAsDone": False,
            "isTurnOffMarkdown": False,
            "defaultProjectId": None,
            "startOfNextDay": 0,
        },
        "shortSyntax": {
            "isEnableProject": True,
            "isEnableDue": True,
            "isEnableTag": True,
        },
        "reminder": {
            "isCountdownBannerEnabled": True,
            "countdownDuration": minute * 10,
            "defaultTaskRemindOption": "AtStart",
            "isFocusWindow": False,
        },
        "sync": {
            "isEnabled": False,
            "syncProvider": None,
            "syncInterval": minute,
        },
    }


def assemble_output(ctx: ConversionContext) -> dict:
    """Place the converted collections into a CompleteBackup envelope."""
    sp_backup = create_empty_sp_data(ctx.now_ms)
    sp_data = sp_backup['data']

    project_ids = list(ctx.projects)
    sp_data['project'] = {"ids": project_ids, "entities": ctx.projects}

    sp_data['task']['ids'] = list(ctx.tasks)
    sp_data['task']['entities'] = ctx.tasks

    tag_ids = sorted_tag_ids(ctx)
    sp_data['tag'] = {"ids": tag_ids, "entities": {tag_id: ctx.tags[tag_id] for tag_id in tag_ids}}

    cfg_ids = sorted(ctx.repeat_cfgs, key=lambda cfg_id: ctx.repeat_cfgs[cfg_id]['order'])
    sp_data['taskRepeatCfg'] = {"ids": cfg_ids, "entities": {cfg_id: ctx.repeat_cfgs[cfg_id] for cfg_id in cfg_ids}}

    # Super Productivity keeps reminders as a plain array, not an ids/entities pair
    sp_data['reminders'] = list(ctx.reminders)
    sp_data['menuTree'] = {
        "projectTree": build_project_tree(project_ids),
        "tagTree": build_tag_tree(tag_ids),
    }

    return sp_backup


def convert_ms_todo_to_sp(
    ms_todo_data: Any,
    verbose: bool = False,
    now: Optional[datetime] = None
) -> dict:
    """
    Convert a Microsoft To Do export to Super Productivity format.

    Args:
        ms_todo_data: Parsed export in either supported shape
        verbose: Print detailed conversion info
        now: Run timestamp used for fallbacks (defaults to the current time;
            naive values are read as UTC)

    Returns:
        Super Productivity compatible data structure in CompleteBackup format:
        {timestamp, lastUpdate, crossModelVersion, data: {...}}

    Raises:
        UnsupportedInputError: If the input shape is not recognized
    """
    task_groups = normalize_input(ms_todo_data)

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    ctx = ConversionContext(int(now.timestamp() * 1000))

    if verbose:
        print(f"Found {len(task_groups)} task list(s)")

    # Tags must exist before any task can reference them
    build_tag_registry(task_groups, ctx)

    if verbose:
        print(f"Found {len(ctx.tags) - 1} tag(s)")

    for mlist, mtasks in task_groups:
        project = convert_task_list(mlist, mtasks, ctx)
        if verbose:
            print(f"  - '{project['title']}': {len(project['taskIds'])} task(s)")

    return assemble_output(ctx)


def summarize_counts(sp_backup: dict) -> dict[str, int]:
    """Count the entities of a converted backup."""
    sp_data = sp_backup['data']
    tasks = sp_data['task']['entities'].values()
    subtask_count = sum(1 for task in tasks if task.get('parentId'))

    return {
        "projects": len(sp_data['project']['ids']),
        "tasks": len(sp_data['task']['ids']) - subtask_count,
        "subtasks": subtask_count,
        "tags": len([tag_id for tag_id in sp_data['tag']['ids'] if tag_id != TODAY_TAG_ID]),
        "repeat_configs": len(sp_data['taskRepeatCfg']['ids']),
        "reminders": len(sp_data['reminders']),
    }


# ============================================================================
# Validation
# ============================================================================

def _validate_tasks(sp_data: dict, errors: list[str]) -> None:
    task_entities = sp_data['task']['entities']
    project_entities = sp_data['project']['entities']

    for task_id, task in task_entities.items():
        project_id = task.get('projectId')
        if project_id and project_id not in project_entities:
            errors.append(f"Task '{task_id}' references non-existent project '{project_id}'")

        if 'dueDay' in task and 'dueWithTime' in task:
            errors.append(f"Task '{task_id}' has both dueDay and dueWithTime")
        has_due = 'dueDay' in task or 'dueWithTime' in task
        if task.get('hasPlannedTime', False) != has_due:
            errors.append(f"Task '{task_id}' has inconsistent hasPlannedTime")

    # Check parent references and circular dependencies
    for task_id, task in task_entities.items():
        parent_id = task.get('parentId')
        if not parent_id:
            continue
        if parent_id not in task_entities:
            errors.append(f"Task '{task_id}' references non-existent parent '{parent_id}'")
        elif parent_id == task_id:
            errors.append(f"Task '{task_id}' is its own parent (circular reference)")
        else:
            visited = {task_id}
            current = parent_id
            while current:
                if current in visited:
                    errors.append(f"Circular parent reference detected involving task '{task_id}'")
                    break
                visited.add(current)
                current = task_entities.get(current, {}).get('parentId')

    for task_id, task in task_entities.items():
        for subtask_id in task.get('subTaskIds', []):
            if subtask_id not in task_entities:
                errors.append(f"Task '{task_id}' lists non-existent subtask '{subtask_id}'")
            elif task_entities[subtask_id].get('parentId') != task_id:
                errors.append(f"Subtask '{subtask_id}' doesn't reference parent '{task_id}'")

    for project_id, project in project_entities.items():
        for task_id in project.get('taskIds', []):
            if task_id not in task_entities:
                errors.append(f"Project '{project_id}' lists non-existent task '{task_id}'")
            elif task_entities[task_id].get('parentId'):
                errors.append(f"Project '{project_id}' lists subtask '{task_id}' (should only list top-level tasks)")
            elif task_entities[task_id].get('projectId') != project_id:
                errors.append(f"Project '{project_id}' lists task '{task_id}' of another project")


def _validate_tags(sp_data: dict, errors: list[str]) -> None:
    task_entities = sp_data['task']['entities']
    tag_entities = sp_data['tag']['entities']

    for task_id, task in task_entities.items():
        for tag_id in task.get('tagIds', []):
            if tag_id not in tag_entities:
                errors.append(f"Task '{task_id}' references non-existent tag '{tag_id}'")
            elif task_id not in tag_entities[tag_id].get('taskIds', []):
                errors.append(f"Tag '{tag_id}' is missing back-reference to task '{task_id}'")

    for tag_id, tag in tag_entities.items():
        for task_id in tag.get('taskIds', []):
            if tag_id not in task_entities.get(task_id, {}).get('tagIds', []):
                errors.append(f"Tag '{tag_id}' lists task '{task_id}' that doesn't reference it")


def _validate_repeat_cfgs_and_reminders(sp_data: dict, errors: list[str]) -> None:
    task_entities = sp_data['task']['entities']
    cfg_entities = sp_data['taskRepeatCfg']['entities']

    for task_id, task in task_entities.items():
        cfg_id = task.get('repeatCfgId')
        if not cfg_id:
            continue
        if cfg_id not in cfg_entities:
            errors.append(f"Task '{task_id}' references non-existent repeat config '{cfg_id}'")
        if task.get('isDone'):
            errors.append(f"Completed task '{task_id}' references repeat config '{cfg_id}'")

    for cfg_id, cfg in cfg_entities.items():
        if cfg.get('repeatEvery', 0) < 1:
            errors.append(f"Repeat config '{cfg_id}' has interval below 1")
        has_start = 'startDate' in cfg
        if has_start != (cfg.get('repeatCycle') in ANCHORED_CYCLES):
            errors.append(f"Repeat config '{cfg_id}' has a start date inconsistent with its cycle")

    for reminder in sp_data.get('reminders', []):
        task = task_entities.get(reminder.get('relatedId'))
        if task is None:
            errors.append(f"Reminder '{reminder.get('id')}' references non-existent task")
        elif task.get('reminderId') != reminder.get('id'):
            errors.append(f"Task '{task['id']}' doesn't reference reminder '{reminder.get('id')}'")


def validate_sp_data(sp_backup: dict) -> list[str]:
    """
    Validate the structure of Super Productivity data.

    Checks envelope fields, task/project/subtask links, tag back-references
    in both directions, due date exclusivity, repeat configs and reminders.

    Args:
        sp_backup: Super Productivity backup data (CompleteBackup format)

    Returns:
        List of validation errors (empty if valid)
    """
    errors: list[str] = []

    if 'data' not in sp_backup:
        errors.append("Missing 'data' field in backup")
        return errors
    for field in ('crossModelVersion', 'timestamp', 'lastUpdate'):
        if field not in sp_backup:
            errors.append(f"Missing '{field}' field in backup")

    sp_data = sp_backup['data']

    task_ids = sp_data['task']['ids']
    if len(task_ids) != len(set(task_ids)):
        errors.append("Duplicate task IDs found")
    for task_id in task_ids:
        if task_id not in sp_data['task']['entities']:
            errors.append(f"Task ID '{task_id}' in ids list but not in entities")

    _validate_tasks(sp_data, errors)
    _validate_tags(sp_data, errors)
    _validate_repeat_cfgs_and_reminders(sp_data, errors)

    return errors


# ============================================================================
# CLI Interface
# ============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Convert a Microsoft To Do export to Super Productivity import format.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python ms_todo_to_sp.py todo_export.json
  python ms_todo_to_sp.py todo_export.json -o my_import.json --validate
  python ms_todo_to_sp.py todo_export.json --dry-run --verbose
        """
    )

    parser.add_argument(
        'input_file',
        help="Path to Microsoft To Do export JSON file"
    )

    parser.add_argument(
        '-o', '--output',
        default='super_productivity_import.json',
        help="Output file path (default: super_productivity_import.json)"
    )

    parser.add_argument(
        '--validate',
        action='store_true',
        help="Check the output's internal references before writing"
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help="Convert and validate without writing output"
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help="Show detailed conversion information"
    )

    args = parser.parse_args()

    try:
        with open(args.input_file, 'r', encoding='utf-8') as f:
            ms_todo_data = json.load(f)
    except FileNotFoundError:
        print(f"Error: Input file '{args.input_file}' not found", file=sys.stderr)
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in input file: {e}", file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        print(f"Reading from: {args.input_file}")

    try:
        sp_data = convert_ms_todo_to_sp(ms_todo_data, verbose=args.verbose)
    except UnsupportedInputError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error during conversion: {e}", file=sys.stderr)
        sys.exit(1)

    if args.validate:
        if args.verbose:
            print("\nValidating output...")

        errors = validate_sp_data(sp_data)
        if errors:
            print("Validation errors:", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            sys.exit(1)
        elif args.verbose:
            print("Validation passed!")

    if not args.dry_run:
        try:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(sp_data, f, indent=2, ensure_ascii=False)

            if args.verbose:
                print(f"\nOutput written to: {args.output}")
            else:
                print(f"Converted successfully: {args.output}")

        except IOError as e:
            print(f"Error writing output file: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print("Dry run complete - no output file written")

    counts = summarize_counts(sp_data)
    print(
        f"Converted {counts['tasks']} task(s), {counts['subtasks']} subtask(s) in "
        f"{counts['projects']} project(s); {counts['tags']} tag(s), "
        f"{counts['repeat_configs']} repeat config(s), {counts['reminders']} reminder(s)"
    )


if __name__ == '__main__':
    main()
