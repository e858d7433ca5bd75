"""
Gantt chart adapter.

Converts the service's Task and TaskDependency records into chart rows and
back. A row's dependencies are encoded as ``"<predecessorId>:<type>"`` pairs
joined by commas, e.g. ``"2:FS,3:SS"``. Encoding and decoding happen only
here; everything else works with structured links.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence

from .domain import (
    ChartRow,
    ChartRowType,
    DEFAULT_DEPENDENCY_TYPE,
    Task,
    TaskDependency,
)


_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')


def _parse_int(text: str) -> Optional[int]:
    """Read the leading integer of ``text``; None when there is none."""
    match = _LEADING_INT.match(text)
    if match is None:
        return None
    return int(match.group(1))


def task_to_chart_row(task: Task, dependencies: Optional[Iterable[TaskDependency]] = None) -> ChartRow:
    """
    Convert a single task into a chart row.

    Only edges owned by the task (``dep.task_id == task.id``) are kept, in
    the order given.
    """
    links = [
        (dep.predecessor_task_id, dep.type)
        for dep in (dependencies or [])
        if dep.task_id == task.id
    ]

    return ChartRow(
        id=str(task.id),
        title=task.name,
        start=task.start_date,
        end=task.end_date,
        progress=task.progress,
        type=ChartRowType.MILESTONE.value if task.is_milestone else ChartRowType.TASK.value,
        links=links,
        assignee=task.assignee,
        status=task.status,
    )


def tasks_to_chart_rows(tasks: Sequence[Task], dependencies: Sequence[TaskDependency]) -> List[ChartRow]:
    """Convert tasks into chart rows, one row per task, preserving order."""
    dependencies = list(dependencies)
    return [task_to_chart_row(task, dependencies) for task in tasks]


def parse_dependency_string(task_id: int, dep_string: Optional[str]) -> List[TaskDependency]:
    """
    Parse a chart dependency string back into partial dependency records.

    Format: ``"taskId:type,taskId:type"``. A segment without a type gets
    ``FS``. Predecessor ids are read permissively: ``"12abc"`` gives 12 and
    text without a number gives None, so one bad segment never fails the
    whole string.
    """
    if not dep_string:
        return []

    parsed = []
    for segment in dep_string.split(','):
        parts = segment.split(':')
        predecessor = parts[0]
        dep_type = parts[1] if len(parts) > 1 and parts[1] else DEFAULT_DEPENDENCY_TYPE
        parsed.append(TaskDependency(
            task_id=task_id,
            predecessor_task_id=_parse_int(predecessor),
            type=dep_type,
        ))
    return parsed


def chart_row_to_task_update(row: Dict) -> Dict:
    """
    Map an edited chart row onto a partial task update payload.

    Only the fields the chart can change are forwarded: title, start, end
    and progress. Keys missing from ``row`` are left out of the payload.
    """
    mapping = {
        'title': 'name',
        'start': 'startDate',
        'end': 'endDate',
        'progress': 'progress',
    }
    return {
        task_key: row[row_key]
        for row_key, task_key in mapping.items()
        if row_key in row
    }
