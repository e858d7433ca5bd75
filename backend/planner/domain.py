"""
Domain records for the Task Board client.

This module defines the records exchanged with the task-management API:
projects, tasks, task dependencies, import jobs and the chart rows derived
from tasks. The API speaks camelCase JSON; every record converts from and to
that wire shape at ``from_dict``/``to_dict`` so the rest of the client only
deals with snake_case attributes.

None of these records are persisted locally. The external service owns the
data; the client reads it, renders it and sends edits back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


# ==================== Error Codes ====================

class ErrorCode(Enum):
    """Error codes returned by the client's own endpoints."""
    SUCCESS = "SUCCESS"
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_TRANSPORT = "ERR_TRANSPORT"
    ERR_SERVICE = "ERR_SERVICE"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_IMPORT_STATE = "ERR_IMPORT_STATE"
    ERR_INVALID_FILE = "ERR_INVALID_FILE"


# ==================== Enumerations ====================

class TaskStatus(Enum):
    """Lifecycle status of a task."""
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"


class ProjectStatus(Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class DependencyType(Enum):
    """Ordering constraint between a task and its predecessor."""
    FINISH_TO_START = "FS"
    START_TO_START = "SS"
    FINISH_TO_FINISH = "FF"
    START_TO_FINISH = "SF"


class ImportStatus(Enum):
    """Status of an import job as reported by the import service."""
    PENDING = "PENDING"
    DRY_RUN = "DRY_RUN"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class SourceType(Enum):
    CSV = "CSV"
    EXCEL = "Excel"


class ChartRowType(Enum):
    TASK = "task"
    MILESTONE = "milestone"


DEFAULT_DEPENDENCY_TYPE = DependencyType.FINISH_TO_START.value


def _drop_none(data: Dict) -> Dict:
    return {key: value for key, value in data.items() if value is not None}


# ==================== Projects ====================

@dataclass
class Project:
    """A project groups tasks under a date range."""
    id: int
    name: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: str = ProjectStatus.ACTIVE.value
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Project':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            start_date=data.get('startDate'),
            end_date=data.get('endDate'),
            status=data.get('status') or ProjectStatus.ACTIVE.value,
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'startDate': self.start_date,
            'endDate': self.end_date,
            'status': self.status,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }


# ==================== Tasks ====================

@dataclass
class Task:
    """
    A scheduled unit of work inside a project.

    Attributes:
        id: Service-assigned identifier
        project_id: Owning project
        task_code: Optional human-readable code, the match key for imports
        name: Task title
        assignee: Optional person responsible
        start_date: ISO date the task starts
        end_date: ISO date the task ends
        progress: Completion percentage (0-100)
        status: One of the TaskStatus values
        parent_task_id: Optional parent task reference
        is_milestone: Zero-duration marker rendered distinctly in the chart
        notes: Free text
    """
    id: int
    name: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    project_id: Optional[int] = None
    task_code: Optional[str] = None
    assignee: Optional[str] = None
    progress: int = 0
    status: str = TaskStatus.PLANNED.value
    parent_task_id: Optional[int] = None
    is_milestone: bool = False
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Task':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            start_date=data.get('startDate'),
            end_date=data.get('endDate'),
            project_id=data.get('projectId'),
            task_code=data.get('taskCode'),
            assignee=data.get('assignee'),
            progress=data.get('progress') or 0,
            status=data.get('status') or TaskStatus.PLANNED.value,
            parent_task_id=data.get('parentTaskId'),
            is_milestone=bool(data.get('isMilestone', False)),
            notes=data.get('notes'),
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'projectId': self.project_id,
            'taskCode': self.task_code,
            'name': self.name,
            'assignee': self.assignee,
            'startDate': self.start_date,
            'endDate': self.end_date,
            'progress': self.progress,
            'status': self.status,
            'parentTaskId': self.parent_task_id,
            'isMilestone': self.is_milestone,
            'notes': self.notes,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }


@dataclass
class TaskDependency:
    """
    Directed edge: ``task_id`` depends on ``predecessor_task_id``.

    ``id`` is None for edges that have not been created on the service yet,
    and ``predecessor_task_id`` is None when it was parsed from text that
    held no number.
    """
    task_id: int
    predecessor_task_id: Optional[int]
    type: str = DEFAULT_DEPENDENCY_TYPE
    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'TaskDependency':
        return cls(
            id=data.get('id'),
            task_id=data['taskId'],
            predecessor_task_id=data.get('predecessorTaskId'),
            type=data.get('type') or DEFAULT_DEPENDENCY_TYPE,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'taskId': self.task_id,
            'predecessorTaskId': self.predecessor_task_id,
            'type': self.type,
        }


# ==================== Chart Rows ====================

@dataclass
class ChartRow:
    """
    One row of the Gantt chart, derived from a Task.

    Dependencies are held as structured ``(predecessor_id, type)`` links and
    only become the delimited ``"2:FS,3:SS"`` string when serialized.
    """
    id: str
    title: str
    start: Optional[str]
    end: Optional[str]
    progress: int
    type: str = ChartRowType.TASK.value
    links: List[Tuple[Optional[int], str]] = field(default_factory=list)
    assignee: Optional[str] = None
    status: Optional[str] = None

    @property
    def dependencies(self) -> Optional[str]:
        if not self.links:
            return None
        return ','.join(f"{predecessor}:{dep_type}" for predecessor, dep_type in self.links)

    def to_dict(self) -> Dict:
        result = {
            'id': self.id,
            'title': self.title,
            'start': self.start,
            'end': self.end,
            'progress': self.progress,
            'type': self.type,
            'assignee': self.assignee,
            'status': self.status,
        }
        dependencies = self.dependencies
        if dependencies is not None:
            result['dependencies'] = dependencies
        return result


# ==================== Import Jobs ====================

@dataclass
class ValidationError:
    """A row-level problem reported by the import service."""
    line_number: Optional[int] = None
    field: Optional[str] = None
    value: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'ValidationError':
        return cls(
            line_number=data.get('lineNumber'),
            field=data.get('field'),
            value=data.get('value'),
            error_code=data.get('errorCode'),
            error_message=data.get('errorMessage'),
        )

    def to_dict(self) -> Dict:
        return _drop_none({
            'lineNumber': self.line_number,
            'field': self.field,
            'value': self.value,
            'errorCode': self.error_code,
            'errorMessage': self.error_message,
        })


@dataclass
class ImportSummary:
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    tasks_created: int = 0
    tasks_updated: int = 0
    dependencies_created: int = 0

    @property
    def valid_rows(self) -> int:
        return self.total_rows - self.failed_rows

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'ImportSummary':
        data = data or {}
        return cls(
            total_rows=data.get('totalRows') or 0,
            successful_rows=data.get('successfulRows') or 0,
            failed_rows=data.get('failedRows') or 0,
            tasks_created=data.get('tasksCreated') or 0,
            tasks_updated=data.get('tasksUpdated') or 0,
            dependencies_created=data.get('dependenciesCreated') or 0,
        )

    def to_dict(self) -> Dict:
        return {
            'totalRows': self.total_rows,
            'successfulRows': self.successful_rows,
            'failedRows': self.failed_rows,
            'tasksCreated': self.tasks_created,
            'tasksUpdated': self.tasks_updated,
            'dependenciesCreated': self.dependencies_created,
        }


@dataclass
class ImportJob:
    """Outcome of one submission to the import service."""
    id: Optional[int]
    status: str
    source_type: Optional[str] = None
    executed_at: Optional[str] = None
    summary: ImportSummary = field(default_factory=ImportSummary)
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @classmethod
    def from_dict(cls, data: Dict) -> 'ImportJob':
        return cls(
            id=data.get('id'),
            status=data.get('status') or ImportStatus.PENDING.value,
            source_type=data.get('sourceType'),
            executed_at=data.get('executedAt'),
            summary=ImportSummary.from_dict(data.get('summary')),
            errors=[ValidationError.from_dict(e) for e in data.get('errors') or []],
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'sourceType': self.source_type,
            'status': self.status,
            'executedAt': self.executed_at,
            'summary': self.summary.to_dict(),
            'errors': [e.to_dict() for e in self.errors],
        }
