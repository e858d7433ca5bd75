"""
HTTP client for the task-management API.

Every call goes through ``TaskApiClient._request`` which applies the
timeout, unwraps the ``{data, meta, errors}`` envelope and turns failures
into one of two exceptions:

- ``TransportError``: no response was received (connection refused,
  DNS failure, timeout).
- ``ServiceError``: the service answered with an error envelope. The
  message is ``errors[0].message``, then ``message``, then a generic
  fallback.

Nothing is retried. Callers decide how to surface the failure.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings

from .domain import (
    DEFAULT_DEPENDENCY_TYPE,
    ImportJob,
    Project,
    Task,
    TaskDependency,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = 'An error occurred'
MALFORMED_RESPONSE_MESSAGE = 'Malformed response from server'
DEFAULT_BASE_URL = 'http://localhost:8080/api'
DEFAULT_TIMEOUT = 30


# ============================================
# ERRORS
# ============================================

class ApiError(Exception):
    """Base class for failures talking to the task-management API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        field: Optional[str] = None,
        errors: Optional[List[Dict]] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.field = field
        self.errors = errors or []


class TransportError(ApiError):
    """No response was received from the service."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ServiceError(ApiError):
    """The service rejected the request with an error envelope."""


# ============================================
# CLIENT
# ============================================

class TaskApiClient:
    """
    Thin wrapper around the project, task, dependency and import endpoints.

    Args:
        base_url: Root of the API, e.g. ``http://localhost:8080/api``
        timeout: Seconds before an in-flight call is abandoned
        session: Optional ``requests.Session`` to reuse connections
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault('timeout', self.timeout)
        try:
            response = self.session.request(method, self._url(path), **kwargs)
        except requests.Timeout as exc:
            logger.error("Network error: %s %s timed out after %ss", method, path, self.timeout)
            raise TransportError(
                f"Request timed out after {self.timeout} seconds",
                timed_out=True
            ) from exc
        except requests.RequestException as exc:
            logger.error("Network error: no response for %s %s (%s)", method, path, exc)
            raise TransportError('No response from server') from exc

        if not response.ok:
            raise self._service_error(method, path, response)
        return response

    @staticmethod
    def _service_error(method: str, path: str, response: requests.Response) -> ServiceError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        errors = body.get('errors') or []
        first = errors[0] if errors and isinstance(errors[0], dict) else {}
        message = first.get('message') or body.get('message') or GENERIC_ERROR_MESSAGE

        logger.error("API error: %s %s -> %s %s", method, path, response.status_code, message)
        return ServiceError(
            message,
            status_code=response.status_code,
            code=first.get('code'),
            field=first.get('field'),
            errors=errors
        )

    def _data(self, method: str, path: str, required: bool = False, **kwargs) -> Any:
        """
        Perform a call and return the ``data`` member of the envelope.

        With ``required`` the call must return a single record; an empty
        body or an envelope without a ``data`` object is a ServiceError.
        """
        response = self._request(method, path, **kwargs)
        body = None
        if response.content:
            try:
                body = response.json()
            except ValueError as exc:
                logger.error("API error: %s %s returned a non-JSON body", method, path)
                raise ServiceError(
                    MALFORMED_RESPONSE_MESSAGE,
                    status_code=response.status_code
                ) from exc

        data = body.get('data') if isinstance(body, dict) else None
        if required and not isinstance(data, dict):
            logger.error("API error: %s %s returned no data", method, path)
            raise ServiceError(MALFORMED_RESPONSE_MESSAGE, status_code=response.status_code)
        return data

    # ----- projects -----

    def list_projects(self, status: Optional[str] = None) -> List[Project]:
        params = {'status': status} if status else {}
        data = self._data('GET', '/projects', params=params)
        return [Project.from_dict(item) for item in data or []]

    def search_projects(self, name: str) -> List[Project]:
        data = self._data('GET', '/projects/search', params={'name': name})
        return [Project.from_dict(item) for item in data or []]

    def get_project(self, project_id: int) -> Project:
        return Project.from_dict(self._data('GET', f'/projects/{project_id}', required=True))

    def create_project(self, payload: Dict) -> Project:
        return Project.from_dict(self._data('POST', '/projects', json=payload, required=True))

    def update_project(self, project_id: int, payload: Dict) -> Project:
        return Project.from_dict(self._data('PATCH', f'/projects/{project_id}', json=payload, required=True))

    def delete_project(self, project_id: int) -> None:
        self._request('DELETE', f'/projects/{project_id}')

    # ----- tasks -----

    def list_tasks(
        self,
        project_id: int,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[Task]:
        params = {'from': date_from, 'to': date_to, 'status': status}
        params = {key: value for key, value in params.items() if value}
        data = self._data('GET', f'/projects/{project_id}/tasks', params=params)
        return [Task.from_dict(item) for item in data or []]

    def get_task(self, task_id: int) -> Task:
        return Task.from_dict(self._data('GET', f'/tasks/{task_id}', required=True))

    def create_task(self, project_id: int, payload: Dict) -> Task:
        return Task.from_dict(self._data('POST', f'/projects/{project_id}/tasks', json=payload, required=True))

    def update_task(self, task_id: int, payload: Dict) -> Task:
        return Task.from_dict(self._data('PATCH', f'/tasks/{task_id}', json=payload, required=True))

    def delete_task(self, task_id: int) -> None:
        self._request('DELETE', f'/tasks/{task_id}')

    # ----- dependencies -----

    def list_dependencies(self, task_id: int) -> List[TaskDependency]:
        data = self._data('GET', f'/tasks/{task_id}/dependencies')
        return [TaskDependency.from_dict(item) for item in data or []]

    def list_project_dependencies(self, tasks: List[Task]) -> List[TaskDependency]:
        """Collect the dependency edges of every task, one call per task."""
        dependencies = []
        for task in tasks:
            dependencies.extend(self.list_dependencies(task.id))
        return dependencies

    def create_dependency(
        self,
        task_id: int,
        predecessor_task_id: int,
        dep_type: str = DEFAULT_DEPENDENCY_TYPE
    ) -> TaskDependency:
        data = self._data(
            'POST',
            f'/tasks/{task_id}/dependencies',
            json={'predecessorTaskId': predecessor_task_id, 'type': dep_type},
            required=True
        )
        return TaskDependency.from_dict(data)

    def delete_dependency(self, task_id: int, dependency_id: int) -> None:
        self._request('DELETE', f'/tasks/{task_id}/dependencies/{dependency_id}')

    # ----- imports -----

    def submit_file(self, file, project_id: int, dry_run: bool) -> ImportJob:
        """
        Upload a CSV/Excel file to the import service.

        ``file`` needs ``name``, ``content`` (bytes) and ``content_type``.
        With ``dry_run`` the service only validates; otherwise it creates or
        updates tasks matched by task code.
        """
        files = {'file': (file.name, file.content, file.content_type)}
        form = {
            'projectId': str(project_id),
            'dryRun': 'true' if dry_run else 'false',
        }
        data = self._data('POST', '/import-jobs', files=files, data=form, required=True)
        return ImportJob.from_dict(data)

    def get_import_job(self, job_id: int) -> ImportJob:
        return ImportJob.from_dict(self._data('GET', f'/import-jobs/{job_id}', required=True))

    def download_error_report(self, job_id: int) -> bytes:
        response = self._request('GET', f'/import-jobs/{job_id}/errors')
        return response.content


def get_client() -> TaskApiClient:
    """Build a client from the ``TASK_API`` setting."""
    config = getattr(settings, 'TASK_API', {})
    return TaskApiClient(
        base_url=config.get('BASE_URL', DEFAULT_BASE_URL),
        timeout=config.get('TIMEOUT', DEFAULT_TIMEOUT),
    )
