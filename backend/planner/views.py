"""
API Views for the Task Board client.

Each view backs one page or action of the client: the project list, the
project's Gantt chart, the task table, task and dependency editing, and the
file import workflow. Data always comes fresh from the task-management API;
the only state kept here is the import workflow, stored in the session.

Errors are reported in one shape:
{
    "success": false,
    "error_code": "ERR_...",
    "message": "...",
    "errors": {...}          // field errors, client-side validation only
}
"""

import logging

from django.conf import settings
from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes, throttle_classes
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from .client import DEFAULT_TIMEOUT, ApiError, ServiceError, TransportError, get_client
from .domain import ErrorCode
from .gantt import chart_row_to_task_update, parse_dependency_string, tasks_to_chart_rows
from .import_workflow import (
    IN_FLIGHT_GRACE_SECONDS,
    MAX_UPLOAD_BYTES,
    ImportFailed,
    ImportFile,
    ImportWorkflow,
    ImportWorkflowError,
    InvalidImportFile,
    errors_to_csv,
    template_csv,
)
from .serializers import (
    TASK_SORT_FIELDS,
    ChartRowUpdateSerializer,
    DependencyInputSerializer,
    ProjectInputSerializer,
    TaskInputSerializer,
    TaskQuerySerializer,
)

logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITING CLASSES
# ============================================

class ImportRateThrottle(AnonRateThrottle):
    """Rate limit for import uploads and commits - 20 requests per minute."""
    scope = 'import'
    rate = '20/min'


class ExportRateThrottle(AnonRateThrottle):
    """Rate limit for CSV downloads - 30 requests per minute."""
    scope = 'export'
    rate = '30/min'


# ============================================
# ERROR RESPONSES
# ============================================

def error_response(code: ErrorCode, message: str, http_status: int, errors=None) -> Response:
    body = {
        'success': False,
        'error_code': code.value,
        'message': message,
    }
    if errors is not None:
        body['errors'] = errors
    return Response(body, status=http_status)


def validation_error_response(serializer, message: str = 'Invalid input data.') -> Response:
    return error_response(
        ErrorCode.ERR_VALIDATION,
        message,
        status.HTTP_400_BAD_REQUEST,
        errors=serializer.errors
    )


def api_error_status(exc: ApiError) -> int:
    """HTTP status to answer with when the task-management API failed."""
    if isinstance(exc, TransportError):
        return status.HTTP_504_GATEWAY_TIMEOUT if exc.timed_out else status.HTTP_503_SERVICE_UNAVAILABLE
    if exc.status_code and 400 <= exc.status_code < 500:
        return exc.status_code
    return status.HTTP_502_BAD_GATEWAY


def api_error_response(exc: ApiError, action: str) -> Response:
    """Log a failed API call and turn it into a blocking error payload."""
    logger.error("Failed to %s: %s", action, exc.message)
    if isinstance(exc, TransportError):
        code = ErrorCode.ERR_TRANSPORT
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        code = ErrorCode.ERR_NOT_FOUND
    else:
        code = ErrorCode.ERR_SERVICE
    return error_response(code, exc.message, api_error_status(exc))


# ============================================
# TASK TABLE HELPERS
# ============================================

def sort_tasks(tasks: list, sort_field: str = 'startDate', order: str = 'asc') -> list:
    """
    Sort tasks for the task table.

    Tasks missing the sort value always go last, whatever the order.
    Ties keep the order the API returned them in.
    """
    attr = TASK_SORT_FIELDS.get(sort_field, 'start_date')
    present = [t for t in tasks if getattr(t, attr) is not None]
    missing = [t for t in tasks if getattr(t, attr) is None]
    present.sort(key=lambda t: getattr(t, attr), reverse=(order == 'desc'))
    return present + missing


def _query_kwargs(query: dict) -> dict:
    return {
        'status': query.get('status'),
        'date_from': query['date_from'].isoformat() if query.get('date_from') else None,
        'date_to': query['date_to'].isoformat() if query.get('date_to') else None,
    }


# ============================================
# IMPORT SESSION HELPERS
# ============================================

def _session_key(project_id: int) -> str:
    return f'import_workflow:{project_id}'


def _max_upload_bytes() -> int:
    return getattr(settings, 'IMPORT_WORKFLOW', {}).get('MAX_UPLOAD_BYTES', MAX_UPLOAD_BYTES)


def _in_flight_timeout() -> float:
    timeout = getattr(settings, 'TASK_API', {}).get('TIMEOUT', DEFAULT_TIMEOUT)
    return timeout + IN_FLIGHT_GRACE_SECONDS


def load_workflow(request: Request, project_id: int) -> ImportWorkflow:
    client = get_client()

    def checkpoint(workflow: ImportWorkflow) -> None:
        # Written now, not at the end of the request, so a concurrent
        # request on this session finds the workflow busy.
        save_workflow(request, workflow)
        request.session.save()

    return ImportWorkflow.from_session(
        request.session.get(_session_key(project_id)),
        project_id,
        submit=client.submit_file,
        max_bytes=_max_upload_bytes(),
        checkpoint=checkpoint,
        stale_after=_in_flight_timeout()
    )


def save_workflow(request: Request, workflow: ImportWorkflow) -> None:
    request.session[_session_key(workflow.project_id)] = workflow.to_session()


def import_failed_response(exc: ImportFailed, action: str) -> Response:
    cause = exc.__cause__
    if isinstance(cause, ApiError):
        return api_error_response(cause, action)
    logger.error("Failed to %s: %s", action, exc)
    return error_response(ErrorCode.ERR_SERVICE, str(exc), status.HTTP_502_BAD_GATEWAY)


# ============================================
# API ENDPOINTS
# ============================================

@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    return Response({
        'name': 'Task Board',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'endpoints': {
            'GET/POST /api/projects/': 'List, search or create projects',
            'GET/PATCH/DELETE /api/projects/{id}/': 'Project detail',
            'GET/POST /api/projects/{id}/tasks/': 'Task table (filter, sort) or create a task',
            'GET /api/projects/{id}/gantt/': 'Gantt chart rows',
            'GET/POST/DELETE /api/projects/{id}/import/': 'Import state, upload with dry run, cancel',
            'POST /api/projects/{id}/import/confirm/': 'Commit a validated import',
            'GET /api/projects/{id}/import/errors.csv': 'Validation errors as CSV',
            'GET /api/import/template.csv': 'Sample import file',
            'GET /api/import-jobs/{id}/': 'Import job detail',
            'GET /api/import-jobs/{id}/errors/': 'Error report from the import service',
            'GET/PATCH/DELETE /api/tasks/{id}/': 'Task detail',
            'PATCH /api/tasks/{id}/chart-row/': 'Apply a chart edit',
            'GET/POST /api/tasks/{id}/dependencies/': 'List or add dependencies',
            'DELETE /api/tasks/{id}/dependencies/{dep_id}/': 'Remove a dependency',
        },
        'task_api': getattr(settings, 'TASK_API', {}).get('BASE_URL'),
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })


# ----- projects -----

@extend_schema(
    summary="List or create projects",
    parameters=[
        OpenApiParameter('status', OpenApiTypes.STR, description='active or archived'),
        OpenApiParameter('name', OpenApiTypes.STR, description='Search by name'),
    ],
    request=ProjectInputSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT},
    tags=['Projects']
)
@api_view(['GET', 'POST'])
def project_list(request: Request) -> Response:
    """
    GET  /api/projects/?status=active&name=apollo
    POST /api/projects/
    """
    client = get_client()

    if request.method == 'POST':
        serializer = ProjectInputSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer)
        try:
            project = client.create_project(serializer.to_wire())
        except ApiError as exc:
            return api_error_response(exc, 'create project')
        return Response(
            {'success': True, 'project': project.to_dict()},
            status=status.HTTP_201_CREATED
        )

    name = request.query_params.get('name', '').strip()
    try:
        if name:
            projects = client.search_projects(name)
        else:
            projects = client.list_projects(request.query_params.get('status') or None)
    except ApiError as exc:
        return api_error_response(exc, 'load projects')

    return Response({
        'success': True,
        'count': len(projects),
        'projects': [p.to_dict() for p in projects],
    })


@extend_schema(
    summary="Project detail",
    request=ProjectInputSerializer,
    responses={200: OpenApiTypes.OBJECT, 204: None},
    tags=['Projects']
)
@api_view(['GET', 'PATCH', 'DELETE'])
def project_detail(request: Request, project_id: int) -> Response:
    """
    GET    /api/projects/{id}/
    PATCH  /api/projects/{id}/
    DELETE /api/projects/{id}/
    """
    client = get_client()
    try:
        if request.method == 'DELETE':
            client.delete_project(project_id)
            return Response(status=status.HTTP_204_NO_CONTENT)

        if request.method == 'PATCH':
            serializer = ProjectInputSerializer(data=request.data, partial=True)
            if not serializer.is_valid():
                return validation_error_response(serializer)
            project = client.update_project(project_id, serializer.to_wire())
        else:
            project = client.get_project(project_id)
    except ApiError as exc:
        return api_error_response(exc, f'{request.method.lower()} project {project_id}')

    return Response({'success': True, 'project': project.to_dict()})


# ----- tasks -----

@extend_schema(
    summary="Task table or create a task",
    description="""
    List the project's tasks, filtered by status and date range and sorted
    by one column. Tasks missing the sort value are listed last.
    """,
    parameters=[
        OpenApiParameter('status', OpenApiTypes.STR),
        OpenApiParameter('from', OpenApiTypes.DATE),
        OpenApiParameter('to', OpenApiTypes.DATE),
        OpenApiParameter('sort', OpenApiTypes.STR, enum=list(TASK_SORT_FIELDS.keys())),
        OpenApiParameter('order', OpenApiTypes.STR, enum=['asc', 'desc']),
    ],
    request=TaskInputSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET', 'POST'])
def project_tasks(request: Request, project_id: int) -> Response:
    """
    GET  /api/projects/{id}/tasks/?status=planned&sort=name&order=desc
    POST /api/projects/{id}/tasks/
    """
    client = get_client()

    if request.method == 'POST':
        serializer = TaskInputSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer, 'Please fix the highlighted fields.')
        try:
            task = client.create_task(project_id, serializer.to_wire())
        except ApiError as exc:
            return api_error_response(exc, 'create task')
        return Response({'success': True, 'task': task.to_dict()}, status=status.HTTP_201_CREATED)

    query = TaskQuerySerializer(data=request.query_params)
    if not query.is_valid():
        return validation_error_response(query)
    params = query.validated_data

    try:
        tasks = client.list_tasks(project_id, **_query_kwargs(params))
    except ApiError as exc:
        return api_error_response(exc, 'load tasks')

    sort_field = params.get('sort', 'startDate')
    order = params.get('order', 'asc')
    tasks = sort_tasks(tasks, sort_field, order)

    return Response({
        'success': True,
        'count': len(tasks),
        'sort': sort_field,
        'order': order,
        'status': params.get('status'),
        'tasks': [t.to_dict() for t in tasks],
    })


@extend_schema(
    summary="Task detail",
    request=TaskInputSerializer,
    responses={200: OpenApiTypes.OBJECT, 204: None},
    tags=['Tasks']
)
@api_view(['GET', 'PATCH', 'DELETE'])
def task_detail(request: Request, task_id: int) -> Response:
    """
    GET    /api/tasks/{id}/
    PATCH  /api/tasks/{id}/
    DELETE /api/tasks/{id}/
    """
    client = get_client()
    try:
        if request.method == 'DELETE':
            client.delete_task(task_id)
            return Response(status=status.HTTP_204_NO_CONTENT)

        if request.method == 'PATCH':
            serializer = TaskInputSerializer(data=request.data, partial=True)
            if not serializer.is_valid():
                return validation_error_response(serializer, 'Please fix the highlighted fields.')
            task = client.update_task(task_id, serializer.to_wire())
        else:
            task = client.get_task(task_id)
    except ApiError as exc:
        return api_error_response(exc, f'{request.method.lower()} task {task_id}')

    return Response({'success': True, 'task': task.to_dict()})


# ----- gantt -----

@extend_schema(
    summary="Gantt chart rows",
    description="""
    Load the project's tasks and their dependencies and convert them into
    chart rows. Rows keep the task order; a row's dependencies are encoded
    as "predecessorId:type" pairs, e.g. "2:FS,3:SS".
    """,
    parameters=[
        OpenApiParameter('status', OpenApiTypes.STR),
        OpenApiParameter('from', OpenApiTypes.DATE),
        OpenApiParameter('to', OpenApiTypes.DATE),
    ],
    responses={200: OpenApiTypes.OBJECT},
    tags=['Gantt']
)
@api_view(['GET'])
def project_gantt(request: Request, project_id: int) -> Response:
    """
    GET /api/projects/{id}/gantt/
    """
    query = TaskQuerySerializer(data=request.query_params)
    if not query.is_valid():
        return validation_error_response(query)

    client = get_client()
    try:
        project = client.get_project(project_id)
        tasks = client.list_tasks(project_id, **_query_kwargs(query.validated_data))
        dependencies = client.list_project_dependencies(tasks)
    except ApiError as exc:
        return api_error_response(exc, 'load Gantt data')

    rows = tasks_to_chart_rows(tasks, dependencies)
    return Response({
        'success': True,
        'project': project.to_dict(),
        'count': len(rows),
        'rows': [row.to_dict() for row in rows],
    })


@extend_schema(
    summary="Apply a chart edit",
    description="Save a task bar that was renamed, moved, resized or had its progress changed.",
    request=ChartRowUpdateSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Gantt']
)
@api_view(['PATCH'])
def task_chart_row(request: Request, task_id: int) -> Response:
    """
    PATCH /api/tasks/{id}/chart-row/
    """
    serializer = ChartRowUpdateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer)

    row = {
        key: value.isoformat() if hasattr(value, 'isoformat') else value
        for key, value in serializer.validated_data.items()
    }
    try:
        task = get_client().update_task(task_id, chart_row_to_task_update(row))
    except ApiError as exc:
        return api_error_response(exc, f'update task {task_id} from chart')

    return Response({
        'success': True,
        'task': task.to_dict(),
        'row': tasks_to_chart_rows([task], [])[0].to_dict(),
    })


# ----- dependencies -----

@extend_schema(
    summary="List or add task dependencies",
    description="""
    POST accepts either one edge ({"predecessorTaskId": 2, "type": "SS"}) or
    a chart dependency string ({"dependencies": "2:FS,3:SS"}). Segments of
    the string without a usable predecessor id are skipped and reported.
    """,
    request=DependencyInputSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT},
    tags=['Dependencies']
)
@api_view(['GET', 'POST'])
def task_dependencies(request: Request, task_id: int) -> Response:
    """
    GET  /api/tasks/{id}/dependencies/
    POST /api/tasks/{id}/dependencies/
    """
    client = get_client()

    if request.method == 'GET':
        try:
            dependencies = client.list_dependencies(task_id)
        except ApiError as exc:
            return api_error_response(exc, f'load dependencies of task {task_id}')
        return Response({
            'success': True,
            'count': len(dependencies),
            'dependencies': [d.to_dict() for d in dependencies],
        })

    serializer = DependencyInputSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer)
    data = serializer.validated_data

    if data.get('predecessor_task_id') is not None:
        try:
            dependency = client.create_dependency(task_id, data['predecessor_task_id'], data['type'])
        except ApiError as exc:
            return api_error_response(exc, f'add dependency to task {task_id}')
        return Response(
            {'success': True, 'dependency': dependency.to_dict()},
            status=status.HTTP_201_CREATED
        )

    created, skipped, failed = [], [], []
    for parsed in parse_dependency_string(task_id, data['dependencies']):
        if parsed.predecessor_task_id is None:
            skipped.append({**parsed.to_dict(), 'reason': 'Predecessor id is not a number'})
            continue
        try:
            created.append(client.create_dependency(task_id, parsed.predecessor_task_id, parsed.type))
        except TransportError as exc:
            return api_error_response(exc, f'add dependencies to task {task_id}')
        except ServiceError as exc:
            logger.warning("Dependency %s -> %s rejected: %s", task_id, parsed.predecessor_task_id, exc.message)
            failed.append({**parsed.to_dict(), 'reason': exc.message})

    return Response(
        {
            'success': not failed,
            'created': [d.to_dict() for d in created],
            'skipped': skipped,
            'failed': failed,
        },
        status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
    )


@extend_schema(
    summary="Remove a task dependency",
    responses={204: None},
    tags=['Dependencies']
)
@api_view(['DELETE'])
def task_dependency_detail(request: Request, task_id: int, dependency_id: int) -> Response:
    """
    DELETE /api/tasks/{id}/dependencies/{dep_id}/
    """
    try:
        get_client().delete_dependency(task_id, dependency_id)
    except ApiError as exc:
        return api_error_response(exc, f'remove dependency {dependency_id}')
    return Response(status=status.HTTP_204_NO_CONTENT)


# ----- import -----

@extend_schema(
    summary="Import workflow",
    description="""
    GET returns the current import state for the project.

    POST uploads a CSV or Excel file (multipart field "file"). Any earlier
    upload and its validation result are discarded, then the file is
    validated by the import service without changing project data.

    DELETE cancels the import and discards the uploaded file.
    """,
    request={
        'multipart/form-data': {
            'type': 'object',
            'properties': {'file': {'type': 'string', 'format': 'binary'}},
            'required': ['file']
        }
    },
    responses={200: OpenApiTypes.OBJECT},
    tags=['Import']
)
@api_view(['GET', 'POST', 'DELETE'])
@parser_classes([MultiPartParser, FormParser])
@throttle_classes([ImportRateThrottle])
def import_session(request: Request, project_id: int) -> Response:
    """
    GET    /api/projects/{id}/import/
    POST   /api/projects/{id}/import/
    DELETE /api/projects/{id}/import/
    """
    workflow = load_workflow(request, project_id)

    if request.method == 'GET':
        return Response({'success': True, **workflow.describe()})

    if request.method == 'DELETE':
        workflow.cancel()
        save_workflow(request, workflow)
        return Response({'success': True, **workflow.describe()})

    upload = request.FILES.get('file')
    if upload is None:
        return error_response(ErrorCode.ERR_INVALID_FILE, 'File is required', status.HTTP_400_BAD_REQUEST)

    import_file = ImportFile(
        name=upload.name,
        content=upload.read(),
        content_type=upload.content_type or 'application/octet-stream'
    )

    try:
        workflow.select_file(import_file)
    except InvalidImportFile as exc:
        save_workflow(request, workflow)
        return error_response(ErrorCode.ERR_INVALID_FILE, str(exc), status.HTTP_400_BAD_REQUEST)
    except ImportFailed as exc:
        save_workflow(request, workflow)
        return import_failed_response(exc, 'validate file')
    except ImportWorkflowError as exc:
        return error_response(ErrorCode.ERR_IMPORT_STATE, str(exc), status.HTTP_409_CONFLICT)

    save_workflow(request, workflow)
    if workflow.can_commit:
        message = 'All rows are valid! You can proceed with the import.'
    else:
        message = f'{workflow.validation.summary.failed_rows} row(s) failed validation.'
    return Response({'success': True, 'message': message, **workflow.describe()})


@extend_schema(
    summary="Commit a validated import",
    description="""
    Submit the uploaded file for real. Only allowed after a dry run that
    reported no errors. A PARTIAL result is a completed import.
    """,
    request=None,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Import']
)
@api_view(['POST'])
@throttle_classes([ImportRateThrottle])
def import_confirm(request: Request, project_id: int) -> Response:
    """
    POST /api/projects/{id}/import/confirm/
    """
    workflow = load_workflow(request, project_id)

    try:
        job = workflow.confirm()
    except ImportFailed as exc:
        save_workflow(request, workflow)
        return import_failed_response(exc, 'import file')
    except ImportWorkflowError as exc:
        return error_response(ErrorCode.ERR_IMPORT_STATE, str(exc), status.HTTP_409_CONFLICT)

    save_workflow(request, workflow)
    summary = job.summary
    return Response({
        'success': True,
        'message': (
            f'Import completed! Tasks created: {summary.tasks_created}, '
            f'tasks updated: {summary.tasks_updated}, '
            f'dependencies created: {summary.dependencies_created}'
        ),
        'next': f'/api/projects/{project_id}/tasks/',
        **workflow.describe()
    })


@extend_schema(
    summary="Validation errors as CSV",
    responses={200: OpenApiTypes.STR},
    tags=['Import']
)
@api_view(['GET'])
@throttle_classes([ExportRateThrottle])
def import_error_report(request: Request, project_id: int):
    """
    GET /api/projects/{id}/import/errors.csv
    """
    workflow = load_workflow(request, project_id)
    if workflow.validation is None:
        return error_response(
            ErrorCode.ERR_NOT_FOUND,
            'No validation result for this project',
            status.HTTP_404_NOT_FOUND
        )

    response = HttpResponse(errors_to_csv(workflow.validation.errors), content_type='text/csv')
    response['Content-Disposition'] = f'attachment; filename="import-errors-project-{project_id}.csv"'
    return response


@extend_schema(
    summary="Sample import template",
    responses={200: OpenApiTypes.STR},
    tags=['Import']
)
@api_view(['GET'])
def import_template(request: Request):
    """
    GET /api/import/template.csv
    """
    response = HttpResponse(template_csv(), content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="sample-import-template.csv"'
    return response


@extend_schema(
    summary="Import job detail",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Import']
)
@api_view(['GET'])
def import_job_detail(request: Request, job_id: int) -> Response:
    """
    GET /api/import-jobs/{id}/
    """
    try:
        job = get_client().get_import_job(job_id)
    except ApiError as exc:
        return api_error_response(exc, f'load import job {job_id}')
    return Response({'success': True, 'import_job': job.to_dict()})


@extend_schema(
    summary="Download the import service's error report",
    responses={200: OpenApiTypes.STR},
    tags=['Import']
)
@api_view(['GET'])
@throttle_classes([ExportRateThrottle])
def import_job_errors(request: Request, job_id: int):
    """
    GET /api/import-jobs/{id}/errors/
    """
    try:
        content = get_client().download_error_report(job_id)
    except ApiError as exc:
        return api_error_response(exc, f'download error report of import job {job_id}')

    response = HttpResponse(content, content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="import-errors-{job_id}.csv"'
    return response
