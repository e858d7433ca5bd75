"""
Two-phase import workflow.

A file is first submitted as a dry run so the import service can report
row-level validation errors without touching project data. Only when that
dry run comes back clean may the user confirm, which submits the same file
again for real.

State machine::

    IDLE --select_file--> VALIDATING --> VALIDATED --confirm--> COMMITTING --> COMPLETED
                              |                                     |
                              +--------------> FAILED <-------------+

``cancel`` returns to IDLE from any state. Selecting a file from any
settled state starts over; a validation result belongs to exactly one
selection and is never reused for another file.

The commit gate is enforced here, on the client. The import service itself
would accept a commit for a file with errors and report ``PARTIAL``.

While a call is in flight the workflow is checkpointed (``checkpoint``) so
that other requests restored from the same session see it as busy. An
in-flight state older than ``stale_after`` seconds is treated as abandoned.
"""

import base64
import csv
import io
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .client import ApiError
from .domain import ImportJob, SourceType, ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Added to the API timeout before an in-flight state counts as abandoned.
IN_FLIGHT_GRACE_SECONDS = 5
DEFAULT_STALE_AFTER = 30 + IN_FLIGHT_GRACE_SECONDS

SOURCE_TYPES_BY_EXTENSION = {
    '.csv': SourceType.CSV,
    '.xlsx': SourceType.EXCEL,
    '.xls': SourceType.EXCEL,
}

ERROR_REPORT_HEADERS = ['Line Number', 'Field', 'Value', 'Error Code', 'Error Message']

TEMPLATE_HEADERS = [
    'task_code', 'name', 'assignee', 'start_date', 'end_date', 'progress',
    'status', 'parent_task_code', 'is_milestone', 'predecessor_task_codes',
    'dependency_type', 'notes',
]

TEMPLATE_EXAMPLE_ROWS = [
    ['T-001', 'Kickoff', 'alice', '2025-01-06', '2025-01-06', '0',
     'planned', '', 'true', '', '', 'Project start'],
    ['T-002', 'Requirements', 'bob', '2025-01-07', '2025-01-17', '0',
     'planned', '', 'false', 'T-001', 'FS', ''],
]


class ImportState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALIDATED = "validated"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_STATES = (ImportState.VALIDATING, ImportState.COMMITTING)


class ImportWorkflowError(Exception):
    """An action was requested that the current state does not allow."""


class InvalidImportFile(ImportWorkflowError):
    """The selected file was rejected before any call was made."""


class ImportFailed(ImportWorkflowError):
    """The validate or commit call failed; the workflow is now FAILED."""


@dataclass
class ImportFile:
    """An uploaded spreadsheet held between the dry run and the commit."""
    name: str
    content: bytes
    content_type: str = 'application/octet-stream'

    @property
    def extension(self) -> str:
        return os.path.splitext(self.name)[1].lower()

    @property
    def source_type(self) -> Optional[SourceType]:
        return SOURCE_TYPES_BY_EXTENSION.get(self.extension)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'content': base64.b64encode(self.content).decode('ascii'),
            'content_type': self.content_type,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ImportFile':
        return cls(
            name=data['name'],
            content=base64.b64decode(data['content']),
            content_type=data.get('content_type') or 'application/octet-stream',
        )


def check_import_file(file: ImportFile, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Reject files the import service cannot take, before uploading them."""
    if file.source_type is None:
        raise InvalidImportFile(
            'Unsupported file type. Only CSV and Excel (.xlsx, .xls) files are supported'
        )
    if not file.content:
        raise InvalidImportFile('File is empty')
    if len(file.content) > max_bytes:
        raise InvalidImportFile(f'File size exceeds {max_bytes // (1024 * 1024)}MB limit')


SubmitFn = Callable[[ImportFile, int, bool], ImportJob]
CheckpointFn = Callable[['ImportWorkflow'], None]


class ImportWorkflow:
    """
    Drives the dry-run/commit protocol for one project.

    Args:
        project_id: Project the tasks are imported into
        submit: ``submit(file, project_id, dry_run) -> ImportJob``, normally
            ``TaskApiClient.submit_file``
        max_bytes: Upload size limit
        checkpoint: Called with the workflow right before each outbound
            call, to persist the in-flight state
        stale_after: Seconds after which a persisted in-flight state is
            considered abandoned
    """

    def __init__(
        self,
        project_id: int,
        submit: Optional[SubmitFn] = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
        checkpoint: Optional[CheckpointFn] = None,
        stale_after: float = DEFAULT_STALE_AFTER
    ):
        self.project_id = project_id
        self.submit = submit
        self.max_bytes = max_bytes
        self.checkpoint = checkpoint
        self.stale_after = stale_after
        self.state = ImportState.IDLE
        self.file: Optional[ImportFile] = None
        self.validation: Optional[ImportJob] = None
        self.result: Optional[ImportJob] = None
        self.failure: Optional[str] = None
        self.selection = 0
        self.started_at: Optional[float] = None

    # ----- queries -----

    @property
    def busy(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    @property
    def can_commit(self) -> bool:
        return (
            self.state == ImportState.VALIDATED
            and self.file is not None
            and self.validation is not None
            and not self.validation.has_errors
        )

    # ----- actions -----

    def select_file(self, file: ImportFile) -> ImportJob:
        """Start over with ``file`` and run the dry run against it."""
        if self.busy:
            raise ImportWorkflowError('An import call is already in progress')

        self._reset()
        check_import_file(file, self.max_bytes)

        self.selection += 1
        selection = self.selection
        self.file = file
        self._begin(ImportState.VALIDATING)
        logger.info("Validating %s for project %s", file.name, self.project_id)

        try:
            job = self._submit(file, dry_run=True)
        except ApiError as exc:
            if selection == self.selection:
                self._fail(exc)
            raise ImportFailed(exc.message) from exc

        if selection != self.selection:
            logger.info("Discarding dry run for superseded selection of %s", file.name)
            return job

        self.validation = job
        self.state = ImportState.VALIDATED
        self.started_at = None
        logger.info(
            "Dry run of %s: %s rows, %s failed",
            file.name, job.summary.total_rows, job.summary.failed_rows
        )
        return job

    def confirm(self) -> ImportJob:
        """Commit the validated file. Only allowed after a clean dry run."""
        if self.busy:
            raise ImportWorkflowError('An import call is already in progress')
        if not self.can_commit:
            raise ImportWorkflowError('Import can only be confirmed after a dry run without errors')

        selection = self.selection
        self._begin(ImportState.COMMITTING)
        logger.info("Committing %s for project %s", self.file.name, self.project_id)

        try:
            job = self._submit(self.file, dry_run=False)
        except ApiError as exc:
            if selection == self.selection:
                self._fail(exc)
            raise ImportFailed(exc.message) from exc

        if selection != self.selection:
            return job

        self.result = job
        self.state = ImportState.COMPLETED
        self.started_at = None
        # The uploaded file is never needed once committed.
        self.file = None
        logger.info(
            "Import %s finished with status %s: %s created, %s updated, %s dependencies",
            job.id, job.status, job.summary.tasks_created,
            job.summary.tasks_updated, job.summary.dependencies_created
        )
        return job

    def cancel(self) -> None:
        """Discard the pending file and results. An in-flight call is not aborted."""
        self.selection += 1
        self._reset()

    # ----- internals -----

    def _begin(self, state: ImportState) -> None:
        self.state = state
        self.started_at = time.time()
        if self.checkpoint is not None:
            self.checkpoint(self)

    def _submit(self, file: ImportFile, dry_run: bool) -> ImportJob:
        if self.submit is None:
            raise ImportWorkflowError('No import service configured')
        return self.submit(file, self.project_id, dry_run)

    def _reset(self) -> None:
        self.state = ImportState.IDLE
        self.file = None
        self.validation = None
        self.result = None
        self.failure = None
        self.started_at = None

    def _fail(self, exc: ApiError) -> None:
        logger.warning("Import for project %s failed: %s", self.project_id, exc.message)
        self._reset()
        self.state = ImportState.FAILED
        self.failure = exc.message

    # ----- persistence -----

    def to_session(self) -> Dict:
        return {
            'project_id': self.project_id,
            'state': self.state.value,
            'selection': self.selection,
            'file': self.file.to_dict() if self.file else None,
            'validation': self.validation.to_dict() if self.validation else None,
            'result': self.result.to_dict() if self.result else None,
            'failure': self.failure,
            'started_at': self.started_at,
        }

    @classmethod
    def from_session(
        cls,
        data: Optional[Dict],
        project_id: int,
        submit: Optional[SubmitFn] = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
        checkpoint: Optional[CheckpointFn] = None,
        stale_after: float = DEFAULT_STALE_AFTER
    ) -> 'ImportWorkflow':
        workflow = cls(
            project_id,
            submit=submit,
            max_bytes=max_bytes,
            checkpoint=checkpoint,
            stale_after=stale_after
        )
        if not data or data.get('project_id') != project_id:
            return workflow

        state = ImportState(data.get('state', ImportState.IDLE.value))
        if state in IN_FLIGHT_STATES:
            started_at = data.get('started_at')
            if started_at is None or time.time() - started_at >= stale_after:
                # The request that made the call died; nothing worth resuming.
                logger.warning("Discarding abandoned %s import for project %s", state.value, project_id)
                state = ImportState.IDLE
                data = {'selection': data.get('selection', 0)}

        workflow.state = state
        workflow.selection = data.get('selection', 0)
        workflow.started_at = data.get('started_at')
        if data.get('file'):
            workflow.file = ImportFile.from_dict(data['file'])
        if data.get('validation'):
            workflow.validation = ImportJob.from_dict(data['validation'])
        if data.get('result'):
            workflow.result = ImportJob.from_dict(data['result'])
        workflow.failure = data.get('failure')
        return workflow

    def describe(self) -> Dict:
        """State as shown on the import page."""
        return {
            'project_id': self.project_id,
            'state': self.state.value,
            'file_name': self.file.name if self.file else None,
            'source_type': self.file.source_type.value if self.file and self.file.source_type else None,
            'can_commit': self.can_commit,
            'validation': self.validation.to_dict() if self.validation else None,
            'result': self.result.to_dict() if self.result else None,
            'failure': self.failure,
        }


# ============================================
# CSV REPORTS
# ============================================

def errors_to_csv(errors: List[ValidationError]) -> str:
    """Render validation errors as a CSV report, one row per error."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(ERROR_REPORT_HEADERS)
    for error in errors:
        writer.writerow([
            error.line_number if error.line_number is not None else '',
            error.field or '',
            error.value or '',
            error.error_code or '',
            error.error_message or '',
        ])
    return output.getvalue()


def template_csv() -> str:
    """Sample import file with every column the importer reads."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerows(TEMPLATE_EXAMPLE_ROWS)
    return output.getvalue()
