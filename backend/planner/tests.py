"""
Unit Tests for the Task Board client.

Covers the Gantt adapter, the import workflow state machine, the API
client's envelope and error handling, form validation, and the endpoints.
The task-management API is replaced by mocks throughout.
"""

import json
import time
from unittest.mock import MagicMock, patch

import requests
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from .client import ServiceError, TaskApiClient, TransportError
from .domain import (
    ChartRowType,
    DependencyType,
    ImportJob,
    ImportStatus,
    ImportSummary,
    Project,
    Task,
    TaskDependency,
    ValidationError,
)
from .gantt import (
    chart_row_to_task_update,
    parse_dependency_string,
    task_to_chart_row,
    tasks_to_chart_rows,
)
from .import_workflow import (
    ERROR_REPORT_HEADERS,
    TEMPLATE_HEADERS,
    ImportFailed,
    ImportFile,
    ImportState,
    ImportWorkflow,
    ImportWorkflowError,
    InvalidImportFile,
    errors_to_csv,
    template_csv,
)
from .serializers import TaskInputSerializer
from .views import sort_tasks


def make_task(task_id, name=None, milestone=False, **kwargs):
    return Task(
        id=task_id,
        name=name or f'Task {task_id}',
        start_date=kwargs.pop('start_date', '2025-01-06'),
        end_date=kwargs.pop('end_date', '2025-01-10'),
        is_milestone=milestone,
        **kwargs
    )


def make_job(status_value, total=10, failed=0, errors=None, job_id=1, **counts):
    return ImportJob(
        id=job_id,
        status=status_value,
        source_type='CSV',
        summary=ImportSummary(total_rows=total, failed_rows=failed, **counts),
        errors=[ValidationError.from_dict(e) for e in errors or []],
    )


def fake_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    if body is None:
        response.json.side_effect = ValueError('No JSON object could be decoded')
        response.content = b''
    else:
        response.json.return_value = body
        response.content = json.dumps(body).encode()
    return response


# ============================================
# GANTT ADAPTER
# ============================================

class GanttAdapterTests(TestCase):
    """Tests for converting tasks and dependencies into chart rows."""

    def test_dependencies_serialized_in_order(self):
        """Task 1 depending on 2 (FS) and 3 (SS) gives "2:FS,3:SS"."""
        task = make_task(1)
        deps = [
            TaskDependency(id=10, task_id=1, predecessor_task_id=2, type='FS'),
            TaskDependency(id=11, task_id=1, predecessor_task_id=3, type='SS'),
        ]

        row = task_to_chart_row(task, deps).to_dict()

        self.assertEqual(row['id'], '1')
        self.assertEqual(row['dependencies'], '2:FS,3:SS')
        self.assertEqual(row['type'], 'task')

    def test_only_owned_edges_are_kept(self):
        """Edges belonging to other tasks must be filtered out."""
        task = make_task(1)
        deps = [
            TaskDependency(task_id=2, predecessor_task_id=1, type='FS'),
            TaskDependency(task_id=1, predecessor_task_id=4, type='FF'),
            TaskDependency(task_id=9, predecessor_task_id=5, type='SS'),
        ]

        row = task_to_chart_row(task, deps)

        self.assertEqual(row.dependencies, '4:FF')

    def test_no_dependencies_means_absent_field(self):
        """Without edges the dependencies key is absent, not an empty string."""
        row = task_to_chart_row(make_task(1), [])

        self.assertIsNone(row.dependencies)
        self.assertNotIn('dependencies', row.to_dict())

    def test_milestone_flag_sets_row_type(self):
        tasks = [make_task(1), make_task(2, milestone=True), make_task(3)]

        rows = tasks_to_chart_rows(tasks, [])

        for task, row in zip(tasks, rows):
            expected = ChartRowType.MILESTONE.value if task.is_milestone else ChartRowType.TASK.value
            self.assertEqual(row.type, expected)

    def test_order_and_length_preserved(self):
        """One row per task, in input order, regardless of dependencies."""
        tasks = [make_task(i) for i in (5, 3, 9, 1)]
        deps = [TaskDependency(task_id=3, predecessor_task_id=5, type='FS')]

        rows = tasks_to_chart_rows(tasks, deps)

        self.assertEqual(len(rows), len(tasks))
        self.assertEqual([r.id for r in rows], ['5', '3', '9', '1'])

    def test_row_copies_task_fields(self):
        task = make_task(
            7, name='Design', assignee='alice', progress=40,
            status='in_progress', start_date='2025-02-01', end_date='2025-02-14'
        )

        row = task_to_chart_row(task).to_dict()

        self.assertEqual(row['title'], 'Design')
        self.assertEqual(row['start'], '2025-02-01')
        self.assertEqual(row['end'], '2025-02-14')
        self.assertEqual(row['progress'], 40)
        self.assertEqual(row['assignee'], 'alice')
        self.assertEqual(row['status'], 'in_progress')

    def test_empty_task_list(self):
        self.assertEqual(tasks_to_chart_rows([], [TaskDependency(task_id=1, predecessor_task_id=2)]), [])


class DependencyStringTests(TestCase):
    """Tests for parsing chart dependency strings."""

    def test_round_trip_all_types(self):
        """Encoding then decoding keeps ids and types in order."""
        types = [t.value for t in DependencyType]
        deps = [
            TaskDependency(task_id=1, predecessor_task_id=10 + i, type=dep_type)
            for i, dep_type in enumerate(types)
        ]

        encoded = task_to_chart_row(make_task(1), deps).dependencies
        decoded = parse_dependency_string(1, encoded)

        self.assertEqual(len(decoded), len(deps))
        self.assertEqual(
            [(d.predecessor_task_id, d.type) for d in decoded],
            [(d.predecessor_task_id, d.type) for d in deps]
        )
        self.assertTrue(all(d.task_id == 1 for d in decoded))

    def test_missing_type_defaults_to_finish_to_start(self):
        for text in ('5', '5:'):
            with self.subTest(text=text):
                parsed = parse_dependency_string(3, text)
                self.assertEqual(len(parsed), 1)
                self.assertEqual(parsed[0].predecessor_task_id, 5)
                self.assertEqual(parsed[0].type, 'FS')

    def test_bad_segment_does_not_fail_batch(self):
        """Non-numeric ids parse to None; the other segments survive."""
        parsed = parse_dependency_string(1, '2:FS,abc:SS,4:FF')

        self.assertEqual([d.predecessor_task_id for d in parsed], [2, None, 4])
        self.assertEqual([d.type for d in parsed], ['FS', 'SS', 'FF'])

    def test_leading_digits_parsed_permissively(self):
        parsed = parse_dependency_string(1, '12abc:SS')
        self.assertEqual(parsed[0].predecessor_task_id, 12)

    def test_empty_string(self):
        self.assertEqual(parse_dependency_string(1, ''), [])
        self.assertEqual(parse_dependency_string(1, None), [])

    def test_chart_row_to_task_update(self):
        payload = chart_row_to_task_update({'title': 'Build', 'start': '2025-03-01', 'progress': 50})
        self.assertEqual(payload, {'name': 'Build', 'startDate': '2025-03-01', 'progress': 50})


# ============================================
# IMPORT WORKFLOW
# ============================================

class ImportWorkflowTests(TestCase):
    """Tests for the dry-run/commit state machine."""

    def setUp(self):
        self.submit = MagicMock()
        self.workflow = ImportWorkflow(7, submit=self.submit)
        self.file = ImportFile('tasks.csv', b'task_code,name\nT-1,Kickoff\n', 'text/csv')

    def test_clean_dry_run_permits_commit(self):
        """A dry run with no errors lets the user confirm."""
        self.submit.return_value = make_job('DRY_RUN', total=10, failed=0)

        job = self.workflow.select_file(self.file)

        self.submit.assert_called_once_with(self.file, 7, True)
        self.assertEqual(job.status, ImportStatus.DRY_RUN.value)
        self.assertEqual(self.workflow.state, ImportState.VALIDATED)
        self.assertTrue(self.workflow.can_commit)

        self.submit.return_value = make_job('SUCCESS', tasks_created=10)
        result = self.workflow.confirm()

        self.assertEqual(self.submit.call_args[0], (self.file, 7, False))
        self.assertEqual(result.summary.tasks_created, 10)
        self.assertEqual(self.workflow.state, ImportState.COMPLETED)

    def test_dry_run_errors_block_commit(self):
        """Two failed rows keep the confirm action closed."""
        errors = [
            {'lineNumber': 3, 'field': 'start_date', 'value': 'x', 'errorCode': 'INVALID_DATE', 'errorMessage': 'Bad date'},
            {'lineNumber': 5, 'field': 'name', 'value': '', 'errorCode': 'REQUIRED', 'errorMessage': 'Name is required'},
        ]
        self.submit.return_value = make_job('DRY_RUN', total=10, failed=2, errors=errors)

        self.workflow.select_file(self.file)

        self.assertEqual(self.workflow.state, ImportState.VALIDATED)
        self.assertFalse(self.workflow.can_commit)
        with self.assertRaises(ImportWorkflowError):
            self.workflow.confirm()
        self.assertEqual(self.submit.call_count, 1)

    def test_partial_commit_is_completed(self):
        """PARTIAL is a normal outcome, not a failure."""
        self.submit.side_effect = [
            make_job('DRY_RUN'),
            make_job('PARTIAL', tasks_created=3, tasks_updated=1, dependencies_created=0),
        ]

        self.workflow.select_file(self.file)
        result = self.workflow.confirm()

        self.assertEqual(result.status, ImportStatus.PARTIAL.value)
        self.assertEqual(self.workflow.state, ImportState.COMPLETED)
        self.assertIsNone(self.workflow.failure)
        self.assertEqual(self.workflow.result.summary.tasks_updated, 1)

    def test_commit_transport_error_fails_and_restarts_clean(self):
        """A failed commit drops every ImportJob; re-selecting validates again."""
        self.submit.side_effect = [
            make_job('DRY_RUN'),
            TransportError('No response from server'),
            make_job('DRY_RUN', total=4),
        ]

        self.workflow.select_file(self.file)
        with self.assertRaises(ImportFailed):
            self.workflow.confirm()

        self.assertEqual(self.workflow.state, ImportState.FAILED)
        self.assertIsNone(self.workflow.validation)
        self.assertIsNone(self.workflow.result)
        self.assertIsNone(self.workflow.file)
        self.assertEqual(self.workflow.failure, 'No response from server')
        self.assertFalse(self.workflow.can_commit)

        self.workflow.select_file(self.file)

        self.assertEqual(self.submit.call_args[0], (self.file, 7, True))
        self.assertEqual(self.workflow.state, ImportState.VALIDATED)
        self.assertEqual(self.workflow.validation.summary.total_rows, 4)
        self.assertIsNone(self.workflow.failure)

    def test_validation_service_error_fails(self):
        self.submit.side_effect = ServiceError('Project not found', status_code=404)

        with self.assertRaises(ImportFailed):
            self.workflow.select_file(self.file)

        self.assertEqual(self.workflow.state, ImportState.FAILED)
        self.assertEqual(self.workflow.failure, 'Project not found')

    def test_new_selection_discards_previous_result(self):
        """A validation result is never reused for another file."""
        other = ImportFile('other.xlsx', b'PK\x03\x04')
        self.submit.side_effect = [make_job('DRY_RUN'), TransportError('timed out', timed_out=True)]

        self.workflow.select_file(self.file)
        with self.assertRaises(ImportFailed):
            self.workflow.select_file(other)

        self.assertIsNone(self.workflow.validation)
        self.assertFalse(self.workflow.can_commit)

    def test_cancel_discards_everything(self):
        self.submit.return_value = make_job('DRY_RUN')
        self.workflow.select_file(self.file)

        self.workflow.cancel()

        self.assertEqual(self.workflow.state, ImportState.IDLE)
        self.assertIsNone(self.workflow.file)
        self.assertIsNone(self.workflow.validation)
        with self.assertRaises(ImportWorkflowError):
            self.workflow.confirm()

    def test_result_for_cancelled_selection_is_dropped(self):
        """A dry run that returns after cancel does not revive the workflow."""
        def cancel_during_call(file, project_id, dry_run):
            self.workflow.cancel()
            return make_job('DRY_RUN')

        self.submit.side_effect = cancel_during_call

        self.workflow.select_file(self.file)

        self.assertEqual(self.workflow.state, ImportState.IDLE)
        self.assertIsNone(self.workflow.validation)

    def test_no_second_call_while_busy(self):
        self.workflow.state = ImportState.COMMITTING
        with self.assertRaises(ImportWorkflowError):
            self.workflow.select_file(self.file)
        with self.assertRaises(ImportWorkflowError):
            self.workflow.confirm()
        self.submit.assert_not_called()

    def test_unsupported_file_rejected_before_upload(self):
        with self.assertRaises(InvalidImportFile):
            self.workflow.select_file(ImportFile('notes.txt', b'hello'))
        self.submit.assert_not_called()
        self.assertEqual(self.workflow.state, ImportState.IDLE)

    def test_empty_and_oversized_files_rejected(self):
        small = ImportWorkflow(7, submit=self.submit, max_bytes=10)
        with self.assertRaises(InvalidImportFile):
            small.select_file(ImportFile('tasks.csv', b''))
        with self.assertRaises(InvalidImportFile):
            small.select_file(ImportFile('tasks.csv', b'x' * 11))
        self.submit.assert_not_called()

    def test_session_round_trip(self):
        self.submit.return_value = make_job('DRY_RUN', total=3)
        self.workflow.select_file(self.file)

        restored = ImportWorkflow.from_session(self.workflow.to_session(), 7, submit=self.submit)

        self.assertEqual(restored.state, ImportState.VALIDATED)
        self.assertEqual(restored.file.content, self.file.content)
        self.assertEqual(restored.file.name, 'tasks.csv')
        self.assertEqual(restored.validation.summary.total_rows, 3)
        self.assertTrue(restored.can_commit)

    def test_session_for_other_project_ignored(self):
        self.submit.return_value = make_job('DRY_RUN')
        self.workflow.select_file(self.file)

        restored = ImportWorkflow.from_session(self.workflow.to_session(), 8)

        self.assertEqual(restored.state, ImportState.IDLE)
        self.assertIsNone(restored.file)

    def test_in_flight_session_state_resets(self):
        data = {'project_id': 7, 'state': 'committing', 'selection': 4}
        restored = ImportWorkflow.from_session(data, 7)
        self.assertEqual(restored.state, ImportState.IDLE)
        self.assertEqual(restored.selection, 4)

    def test_checkpoint_before_each_call(self):
        """The in-flight state is handed to the checkpoint before the call is made."""
        seen = []
        self.workflow.checkpoint = lambda wf: seen.append(
            (wf.state, wf.started_at is not None, self.submit.call_count)
        )
        self.submit.side_effect = [make_job('DRY_RUN'), make_job('SUCCESS')]

        self.workflow.select_file(self.file)
        self.workflow.confirm()

        self.assertEqual(seen, [
            (ImportState.VALIDATING, True, 0),
            (ImportState.COMMITTING, True, 1),
        ])
        self.assertIsNone(self.workflow.started_at)

    def test_recent_in_flight_session_stays_busy(self):
        """Another request restoring a committing workflow must not commit again."""
        self.submit.return_value = make_job('DRY_RUN')
        self.workflow.select_file(self.file)
        data = self.workflow.to_session()
        data.update(state='committing', started_at=time.time())

        restored = ImportWorkflow.from_session(data, 7, submit=self.submit, stale_after=35)

        self.assertTrue(restored.busy)
        with self.assertRaises(ImportWorkflowError):
            restored.confirm()
        with self.assertRaises(ImportWorkflowError):
            restored.select_file(self.file)
        self.assertEqual(self.submit.call_count, 1)

    def test_abandoned_in_flight_session_resets(self):
        data = {
            'project_id': 7,
            'state': 'validating',
            'selection': 2,
            'started_at': time.time() - 120,
            'file': self.file.to_dict(),
        }

        restored = ImportWorkflow.from_session(data, 7, stale_after=35)

        self.assertEqual(restored.state, ImportState.IDLE)
        self.assertIsNone(restored.file)
        self.assertEqual(restored.selection, 2)

    def test_committed_file_is_dropped(self):
        self.submit.side_effect = [make_job('DRY_RUN'), make_job('SUCCESS', tasks_created=2)]

        self.workflow.select_file(self.file)
        self.workflow.confirm()

        self.assertIsNone(self.workflow.file)
        self.assertIsNone(self.workflow.to_session()['file'])
        self.assertEqual(self.workflow.result.summary.tasks_created, 2)


class ImportReportTests(TestCase):
    """Tests for CSV reports produced by the import page."""

    def test_error_report_rows(self):
        job = make_job('DRY_RUN', failed=1, errors=[
            {'lineNumber': 4, 'field': 'progress', 'value': '120',
             'errorCode': 'OUT_OF_RANGE', 'errorMessage': 'Progress must be between 0 and 100'},
        ])

        lines = errors_to_csv(job.errors).splitlines()

        self.assertEqual(lines[0], ','.join(ERROR_REPORT_HEADERS))
        self.assertEqual(lines[1], '4,progress,120,OUT_OF_RANGE,Progress must be between 0 and 100')

    def test_template_has_all_columns(self):
        header = template_csv().splitlines()[0]
        self.assertEqual(header.split(','), TEMPLATE_HEADERS)

    def test_source_type_from_extension(self):
        self.assertEqual(ImportFile('a.CSV', b'x').source_type.value, 'CSV')
        self.assertEqual(ImportFile('a.xlsx', b'x').source_type.value, 'Excel')
        self.assertIsNone(ImportFile('a.json', b'x').source_type)


# ============================================
# API CLIENT
# ============================================

class TaskApiClientTests(TestCase):
    """Tests for envelope unwrapping and error mapping."""

    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.client = TaskApiClient('http://api.test/api/', timeout=30, session=self.session)

    def test_unwraps_data(self):
        self.session.request.return_value = fake_response(200, {
            'data': [{'id': 1, 'name': 'Apollo', 'status': 'active'}],
            'meta': {'requestId': 'abc'},
        })

        projects = self.client.list_projects()

        self.assertEqual(len(projects), 1)
        self.assertIsInstance(projects[0], Project)
        self.assertEqual(projects[0].name, 'Apollo')
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ('GET', 'http://api.test/api/projects'))
        self.assertEqual(self.session.request.call_args[1]['timeout'], 30)

    def test_error_envelope_message(self):
        self.session.request.return_value = fake_response(400, {
            'errors': [{'code': 'VALIDATION_ERROR', 'field': 'name', 'message': 'Name is required'}],
        })

        with self.assertRaises(ServiceError) as ctx:
            self.client.create_project({'name': ''})

        self.assertEqual(ctx.exception.message, 'Name is required')
        self.assertEqual(ctx.exception.code, 'VALIDATION_ERROR')
        self.assertEqual(ctx.exception.field, 'name')
        self.assertEqual(ctx.exception.status_code, 400)

    def test_error_without_envelope_uses_fallback(self):
        self.session.request.return_value = fake_response(500)

        with self.assertRaises(ServiceError) as ctx:
            self.client.get_task(3)

        self.assertEqual(ctx.exception.message, 'An error occurred')
        self.assertEqual(ctx.exception.status_code, 500)

    def test_timeout_is_transport_error(self):
        self.session.request.side_effect = requests.Timeout('read timed out')

        with self.assertRaises(TransportError) as ctx:
            self.client.list_tasks(1)

        self.assertTrue(ctx.exception.timed_out)

    def test_connection_error_is_transport_error(self):
        self.session.request.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(TransportError) as ctx:
            self.client.list_dependencies(1)

        self.assertFalse(ctx.exception.timed_out)
        self.assertEqual(ctx.exception.message, 'No response from server')

    def test_submit_file_sends_form_fields(self):
        self.session.request.return_value = fake_response(201, {
            'data': {'id': 5, 'status': 'DRY_RUN', 'summary': {'totalRows': 10, 'failedRows': 0}, 'errors': []},
        })
        upload = ImportFile('tasks.csv', b'a,b\n', 'text/csv')

        job = self.client.submit_file(upload, 7, True)

        self.assertEqual(job.status, 'DRY_RUN')
        self.assertFalse(job.has_errors)
        kwargs = self.session.request.call_args[1]
        self.assertEqual(kwargs['data'], {'projectId': '7', 'dryRun': 'true'})
        self.assertEqual(kwargs['files']['file'], ('tasks.csv', b'a,b\n', 'text/csv'))

    def test_missing_data_is_service_error(self):
        """A 2xx answer without a data record must not reach the record parsers."""
        upload = ImportFile('tasks.csv', b'a,b\n', 'text/csv')
        for body in ({}, {'data': None}, {'meta': {}}, None):
            with self.subTest(body=body):
                self.session.request.return_value = fake_response(200, body)

                with self.assertRaises(ServiceError) as ctx:
                    self.client.get_project(1)
                self.assertEqual(ctx.exception.message, 'Malformed response from server')
                self.assertEqual(ctx.exception.status_code, 200)

                with self.assertRaises(ServiceError):
                    self.client.submit_file(upload, 7, True)

    def test_list_tasks_drops_empty_filters(self):
        self.session.request.return_value = fake_response(200, {'data': []})

        self.client.list_tasks(2, date_from='2025-01-01', status=None)

        self.assertEqual(self.session.request.call_args[1]['params'], {'from': '2025-01-01'})

    def test_create_dependency_default_type(self):
        self.session.request.return_value = fake_response(201, {
            'data': {'id': 9, 'taskId': 1, 'predecessorTaskId': 2, 'type': 'FS'},
        })

        dep = self.client.create_dependency(1, 2)

        self.assertEqual(self.session.request.call_args[1]['json'], {'predecessorTaskId': 2, 'type': 'FS'})
        self.assertEqual(dep.predecessor_task_id, 2)


# ============================================
# FORM VALIDATION
# ============================================

class TaskInputSerializerTests(TestCase):
    """Tests for client-side task form validation."""

    def valid_data(self, **overrides):
        data = {
            'name': 'Write report',
            'start_date': '2025-01-06',
            'end_date': '2025-01-10',
            'progress': 20,
        }
        data.update(overrides)
        return data

    def test_valid_task(self):
        serializer = TaskInputSerializer(data=self.valid_data(task_code='T-9', is_milestone=True))

        self.assertTrue(serializer.is_valid(), serializer.errors)
        payload = serializer.to_wire()
        self.assertEqual(payload['taskCode'], 'T-9')
        self.assertEqual(payload['startDate'], '2025-01-06')
        self.assertEqual(payload['status'], 'planned')
        self.assertTrue(payload['isMilestone'])

    def test_name_required(self):
        serializer = TaskInputSerializer(data=self.valid_data(name='   '))
        self.assertFalse(serializer.is_valid())
        self.assertIn('name', serializer.errors)

    def test_end_before_start(self):
        serializer = TaskInputSerializer(data=self.valid_data(start_date='2025-02-01', end_date='2025-01-01'))
        self.assertFalse(serializer.is_valid())
        self.assertIn('end_date', serializer.errors)

    def test_progress_out_of_range(self):
        for progress in (-1, 101):
            with self.subTest(progress=progress):
                serializer = TaskInputSerializer(data=self.valid_data(progress=progress))
                self.assertFalse(serializer.is_valid())
                self.assertIn('progress', serializer.errors)

    def test_partial_update_sends_only_given_fields(self):
        serializer = TaskInputSerializer(data={'progress': 75}, partial=True)

        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.to_wire(), {'progress': 75})


class SortTasksTests(TestCase):

    def test_missing_values_last_in_both_orders(self):
        tasks = [
            make_task(1, task_code='B'),
            make_task(2, task_code=None),
            make_task(3, task_code='A'),
        ]

        self.assertEqual([t.id for t in sort_tasks(tasks, 'taskCode', 'asc')], [3, 1, 2])
        self.assertEqual([t.id for t in sort_tasks(tasks, 'taskCode', 'desc')], [1, 3, 2])


# ============================================
# ENDPOINTS
# ============================================

class ProjectAndTaskEndpointTests(APITestCase):
    """Tests for the project, task and Gantt endpoints."""

    def setUp(self):
        cache.clear()
        patcher = patch('planner.views.get_client')
        self.addCleanup(patcher.stop)
        self.api = MagicMock()
        patcher.start().return_value = self.api

    def test_api_info_endpoint(self):
        response = self.client.get('/api/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('endpoints', response.data)
        self.assertIn('error_codes', response.data)

    def test_project_list(self):
        self.api.list_projects.return_value = [Project(id=1, name='Apollo')]

        response = self.client.get('/api/projects/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['projects'][0]['name'], 'Apollo')

    def test_project_search_by_name(self):
        self.api.search_projects.return_value = []

        response = self.client.get('/api/projects/', {'name': 'apo'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.api.search_projects.assert_called_once_with('apo')
        self.api.list_projects.assert_not_called()

    def test_transport_error_is_reported(self):
        self.api.list_projects.side_effect = TransportError('No response from server')

        response = self.client.get('/api/projects/')

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error_code'], 'ERR_TRANSPORT')
        self.assertEqual(response.data['message'], 'No response from server')

    def test_service_not_found_is_reported(self):
        self.api.get_project.side_effect = ServiceError('Project not found with id: 4', status_code=404)

        response = self.client.get('/api/projects/4/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error_code'], 'ERR_NOT_FOUND')

    def test_create_task_invalid_never_calls_api(self):
        data = {'name': 'Bad', 'start_date': '2025-03-01', 'end_date': '2025-02-01', 'progress': 150}

        response = self.client.post('/api/projects/1/tasks/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_VALIDATION')
        self.assertIn('progress', response.data['errors'])
        self.api.create_task.assert_not_called()

    def test_create_task(self):
        self.api.create_task.return_value = make_task(12, name='Kickoff')
        data = {'name': 'Kickoff', 'start_date': '2025-03-01', 'end_date': '2025-03-01'}

        response = self.client.post('/api/projects/1/tasks/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        project_id, payload = self.api.create_task.call_args[0]
        self.assertEqual(project_id, 1)
        self.assertEqual(payload['name'], 'Kickoff')
        self.assertEqual(payload['endDate'], '2025-03-01')

    def test_task_table_filters_and_sorts(self):
        self.api.list_tasks.return_value = [make_task(1, name='b'), make_task(2, name='a')]

        response = self.client.get('/api/projects/3/tasks/', {'status': 'planned', 'sort': 'name', 'order': 'asc'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['id'] for t in response.data['tasks']], [2, 1])
        self.api.list_tasks.assert_called_once_with(3, status='planned', date_from=None, date_to=None)

    def test_task_table_rejects_unknown_status(self):
        response = self.client.get('/api/projects/3/tasks/', {'status': 'archived'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_gantt_rows(self):
        self.api.get_project.return_value = Project(id=3, name='Apollo')
        self.api.list_tasks.return_value = [make_task(1), make_task(2, milestone=True)]
        self.api.list_project_dependencies.return_value = [
            TaskDependency(id=1, task_id=1, predecessor_task_id=2, type='FS'),
            TaskDependency(id=2, task_id=1, predecessor_task_id=3, type='SS'),
        ]

        response = self.client.get('/api/projects/3/gantt/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rows = response.data['rows']
        self.assertEqual(rows[0]['dependencies'], '2:FS,3:SS')
        self.assertEqual(rows[0]['type'], 'task')
        self.assertNotIn('dependencies', rows[1])
        self.assertEqual(rows[1]['type'], 'milestone')

    def test_chart_row_edit_updates_task(self):
        self.api.update_task.return_value = make_task(5, name='Renamed', progress=60)

        response = self.client.patch(
            '/api/tasks/5/chart-row/',
            {'title': 'Renamed', 'start': '2025-01-06', 'progress': 60},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.api.update_task.assert_called_once_with(
            5, {'name': 'Renamed', 'startDate': '2025-01-06', 'progress': 60}
        )
        self.assertEqual(response.data['row']['title'], 'Renamed')

    def test_dependency_string_creates_each_edge(self):
        self.api.create_dependency.side_effect = [
            TaskDependency(id=1, task_id=4, predecessor_task_id=2, type='FS'),
            TaskDependency(id=2, task_id=4, predecessor_task_id=3, type='FS'),
        ]

        response = self.client.post('/api/tasks/4/dependencies/', {'dependencies': '2:FS,abc:SS,3'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['created']), 2)
        self.assertEqual(len(response.data['skipped']), 1)
        self.assertEqual(self.api.create_dependency.call_args_list[1][0], (4, 3, 'FS'))

    def test_single_dependency(self):
        self.api.create_dependency.return_value = TaskDependency(id=8, task_id=4, predecessor_task_id=2, type='SS')

        response = self.client.post(
            '/api/tasks/4/dependencies/',
            {'predecessorTaskId': 2, 'type': 'SS'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.api.create_dependency.assert_called_once_with(4, 2, 'SS')

    def test_delete_dependency(self):
        response = self.client.delete('/api/tasks/4/dependencies/8/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.api.delete_dependency.assert_called_once_with(4, 8)


class ImportEndpointTests(APITestCase):
    """Tests for the import page endpoints."""

    def setUp(self):
        cache.clear()
        patcher = patch('planner.views.get_client')
        self.addCleanup(patcher.stop)
        self.api = MagicMock()
        self.get_client = patcher.start()
        self.get_client.return_value = self.api

    def upload(self, name='tasks.csv', content=b'task_code,name\nT-1,Kickoff\n'):
        return self.client.post(
            '/api/projects/7/import/',
            {'file': SimpleUploadedFile(name, content, content_type='text/csv')},
            format='multipart'
        )

    def test_dry_run_then_confirm(self):
        self.api.submit_file.return_value = make_job('DRY_RUN', total=10, failed=0)

        response = self.upload()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'validated')
        self.assertTrue(response.data['can_commit'])
        self.assertEqual(response.data['source_type'], 'CSV')
        uploaded, project_id, dry_run = self.api.submit_file.call_args[0]
        self.assertEqual((uploaded.name, project_id, dry_run), ('tasks.csv', 7, True))

        self.api.submit_file.return_value = make_job(
            'PARTIAL', tasks_created=3, tasks_updated=1, dependencies_created=0
        )
        response = self.client.post('/api/projects/7/import/confirm/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'completed')
        self.assertEqual(response.data['result']['status'], 'PARTIAL')
        self.assertIn('Tasks created: 3', response.data['message'])
        self.assertFalse(self.api.submit_file.call_args[0][2])
        self.assertIsNone(response.data['file_name'])

    def test_second_confirm_while_committing_rejected(self):
        """A confirm arriving while the commit call is in flight gets a 409."""
        overlapping = []

        def submit(file, project_id, dry_run):
            if dry_run:
                return make_job('DRY_RUN')
            if not overlapping:
                overlapping.append(self.client.post('/api/projects/7/import/confirm/'))
            return make_job('SUCCESS', tasks_created=1)

        self.api.submit_file.side_effect = submit
        self.upload()

        response = self.client.post('/api/projects/7/import/confirm/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(overlapping[0].status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(overlapping[0].data['error_code'], 'ERR_IMPORT_STATE')
        self.assertEqual([c[0][2] for c in self.api.submit_file.call_args_list], [True, False])
        self.assertEqual(self.client.get('/api/projects/7/import/').data['state'], 'completed')

    def test_upload_while_validating_rejected(self):
        overlapping = []
        self.api.submit_file.return_value = make_job('DRY_RUN')
        self.upload(name='first.csv')

        def submit(file, project_id, dry_run):
            if not overlapping:
                overlapping.append(self.upload(name='other.csv'))
            return make_job('DRY_RUN')

        self.api.submit_file.side_effect = submit

        response = self.upload()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(overlapping[0].status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(self.api.submit_file.call_count, 2)
        self.assertEqual(response.data['file_name'], 'tasks.csv')

    @override_settings(TASK_API={'BASE_URL': 'http://api.test/api', 'TIMEOUT': 30})
    def test_abandoned_commit_does_not_block_forever(self):
        self.api.submit_file.return_value = make_job('DRY_RUN')
        self.upload()
        session = self.client.session
        stored = session['import_workflow:7']
        stored.update(state='committing', started_at=time.time() - 120)
        session['import_workflow:7'] = stored
        session.save()

        response = self.client.get('/api/projects/7/import/')

        self.assertEqual(response.data['state'], 'idle')

    def test_empty_envelope_fails_cleanly(self):
        """A 2xx import answer without data is a blocking error, not a crash."""
        http = MagicMock()
        http.headers = {}
        http.request.side_effect = [
            fake_response(201, {'data': {'id': 1, 'status': 'DRY_RUN', 'summary': {'totalRows': 2}, 'errors': []}}),
            fake_response(201, {}),
        ]
        self.get_client.return_value = TaskApiClient('http://api.test/api', session=http)

        self.assertTrue(self.upload().data['can_commit'])
        response = self.upload(name='second.csv')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error_code'], 'ERR_SERVICE')
        self.assertEqual(response.data['message'], 'Malformed response from server')

        state = self.client.get('/api/projects/7/import/').data
        self.assertEqual(state['state'], 'failed')
        self.assertIsNone(state['validation'])
        self.assertIsNone(state['file_name'])

    @override_settings(IMPORT_WORKFLOW={'MAX_UPLOAD_BYTES': 16})
    def test_upload_size_limit(self):
        response = self.upload(content=b'x' * 17)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_FILE')
        self.api.submit_file.assert_not_called()

    def test_confirm_blocked_by_errors(self):
        self.api.submit_file.return_value = make_job('DRY_RUN', failed=2, errors=[
            {'lineNumber': 2, 'field': 'name', 'errorMessage': 'Name is required'},
            {'lineNumber': 3, 'field': 'end_date', 'errorMessage': 'Invalid date'},
        ])

        response = self.upload()
        self.assertFalse(response.data['can_commit'])

        response = self.client.post('/api/projects/7/import/confirm/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error_code'], 'ERR_IMPORT_STATE')
        self.assertEqual(self.api.submit_file.call_count, 1)

    def test_confirm_without_upload(self):
        response = self.client.post('/api/projects/7/import/confirm/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_commit_transport_error_leaves_failed_state(self):
        self.api.submit_file.side_effect = [
            make_job('DRY_RUN'),
            TransportError('Request timed out after 30 seconds', timed_out=True),
        ]
        self.upload()

        response = self.client.post('/api/projects/7/import/confirm/')

        self.assertEqual(response.status_code, status.HTTP_504_GATEWAY_TIMEOUT)
        self.assertEqual(response.data['error_code'], 'ERR_TRANSPORT')

        state = self.client.get('/api/projects/7/import/').data
        self.assertEqual(state['state'], 'failed')
        self.assertIsNone(state['validation'])
        self.assertIsNone(state['result'])
        self.assertIsNone(state['file_name'])

    def test_unsupported_file(self):
        response = self.upload(name='notes.txt')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_FILE')
        self.api.submit_file.assert_not_called()

    def test_missing_file(self):
        response = self.client.post('/api/projects/7/import/', {}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cancel(self):
        self.api.submit_file.return_value = make_job('DRY_RUN')
        self.upload()

        response = self.client.delete('/api/projects/7/import/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'idle')
        self.assertIsNone(response.data['file_name'])

    def test_error_report_csv(self):
        self.api.submit_file.return_value = make_job('DRY_RUN', failed=1, errors=[
            {'lineNumber': 2, 'field': 'name', 'value': '', 'errorCode': 'REQUIRED', 'errorMessage': 'Name is required'},
        ])
        self.upload()

        response = self.client.get('/api/projects/7/import/errors.csv')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn(b'2,name,,REQUIRED,Name is required', response.content)

    def test_error_report_without_validation(self):
        response = self.client.get('/api/projects/7/import/errors.csv')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_template_download(self):
        response = self.client.get('/api/import/template.csv')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.content.startswith(b'task_code,name,assignee'))

    def test_service_error_report_proxied(self):
        self.api.download_error_report.return_value = b'Line Number,Field\n3,name\n'

        response = self.client.get('/api/import-jobs/12/errors/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('import-errors-12.csv', response['Content-Disposition'])
        self.assertEqual(response.content, b'Line Number,Field\n3,name\n')
