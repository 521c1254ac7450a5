#!/usr/bin/env python3
"""
Project Server REST Client
NTLM-authenticated access to the Project Server `_api/ProjectServer` surface.

Reads are single GETs. Writes follow the server's draft workflow, one network
call per step, none skippable:

    acquire digest -> checkout -> patch draft -> publish (fresh digest) -> wait for queue

The queue wait is best effort: it polls every couple of seconds and gives up
silently at the deadline, reporting confirmed=False instead of raising.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from requests_ntlm import HttpNtlmAuth

from portfolio_system.core.errors import (
    AssignmentFailed,
    CheckoutFailed,
    DigestUnavailable,
    PatchFailed,
    PublishFailed,
    QueueTimeout,
    ReadFailed,
    SchemaError,
    TransportError,
)
from portfolio_system.core.section_logger import ErrorCodes, ps_logger, write_logger
from portfolio_system.project_server.schemas import (
    EnterpriseResource,
    PublishResult,
    RemoteProject,
    RemoteTask,
    extract_digest,
    extract_job_id,
    extract_results,
)

logger = logging.getLogger(__name__)

ODATA_HEADERS = {
    'Accept': 'application/json;odata=verbose',
    'Content-Type': 'application/json;odata=verbose',
}

PROJECT_FIELDS = 'Id,Name,PercentComplete,Description,StartDate,FinishDate'
TASK_FIELDS = 'Id,Name,PercentComplete,FixedCost,Start,Finish'
RESOURCE_FIELDS = 'Id,Name'
CUSTOM_FIELD_FIELDS = 'Name,Id,InternalName,FieldType'

# Only enterprise fields created for the portfolio upload are interesting
CUSTOM_FIELD_PREFIX = 'EPM_'


def _literal(value: str) -> str:
    """OData string literal body"""
    return str(value).replace("'", "''")


class ProjectServerClient:
    """Client for one Project Server instance; owns its NTLM session"""

    def __init__(self, base_url: str, username: str = '', password: str = '', domain: str = '',
                 timeout: float = 30, queue_max_wait: float = 60, queue_poll_interval: float = 2,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.base_url = base_url.rstrip('/')
        self.username = username
        self.domain = domain
        self.timeout = timeout
        self.queue_max_wait = queue_max_wait
        self.queue_poll_interval = queue_poll_interval
        self.session = session or self._build_session(username, password, domain)
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config, **kwargs) -> 'ProjectServerClient':
        return cls(
            timeout=config.PS_REQUEST_TIMEOUT,
            queue_max_wait=config.QUEUE_MAX_WAIT_SECONDS,
            queue_poll_interval=config.QUEUE_POLL_INTERVAL_SECONDS,
            **config.ps_credentials(),
            **kwargs,
        )

    @staticmethod
    def _build_session(username: str, password: str, domain: str) -> requests.Session:
        session = requests.Session()
        account = f"{domain}\\{username}" if domain else username
        session.auth = HttpNtlmAuth(account, password)
        return session

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(self, method: str, path: str, body: Any = None,
                 headers: Optional[Dict[str, str]] = None) -> Tuple[int, Any]:
        """Send one signed request; returns (status, parsed JSON or raw text)"""
        url = f"{self.base_url}{path}"
        data = None
        if body is not None:
            data = body if isinstance(body, str) else json.dumps(body)

        try:
            response = self.session.request(
                method,
                url,
                data=data,
                headers={**ODATA_HEADERS, **(headers or {})},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            ps_logger.log_error(ErrorCodes.PS_REQUEST, f"{method} {path} failed: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e

        payload = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
        return response.status_code, payload

    def _get_collection(self, path: str, endpoint: str) -> List[Dict[str, Any]]:
        status, payload = self._request('GET', path)
        if status != 200:
            ps_logger.log_error(ErrorCodes.PS_READ_FAILED, f"GET {endpoint} answered {status}")
            raise ReadFailed(f"GET {endpoint} failed: {status}", details={'status': status})
        return extract_results(payload, endpoint)

    # =========================================================================
    # READS
    # =========================================================================

    def test_connection(self) -> bool:
        """True when the server answers a minimal projects query"""
        try:
            status, _ = self._request('GET', '/_api/ProjectServer/Projects?$top=1&$select=Id')
        except TransportError:
            ps_logger.log_warning(ErrorCodes.PS_CONNECTION_FAILED, f"{self.base_url} unreachable")
            return False
        return status == 200

    def list_projects(self) -> List[RemoteProject]:
        records = self._get_collection(
            f"/_api/ProjectServer/Projects?$select={PROJECT_FIELDS}", 'Projects')
        return [RemoteProject.from_record(r) for r in records]

    def list_tasks(self, project_id: str) -> List[RemoteTask]:
        records = self._get_collection(
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/Tasks?$select={TASK_FIELDS}",
            'Tasks')
        return [RemoteTask.from_record(r) for r in records]

    def list_resources(self) -> List[EnterpriseResource]:
        records = self._get_collection(
            f"/_api/ProjectServer/EnterpriseResources?$select={RESOURCE_FIELDS}", 'EnterpriseResources')
        return [EnterpriseResource.from_record(r) for r in records]

    def list_custom_fields(self) -> Dict[str, Dict[str, Any]]:
        """Portfolio custom fields keyed by name"""
        records = self._get_collection(
            f"/_api/ProjectServer/CustomFields?$select={CUSTOM_FIELD_FIELDS}", 'CustomFields')
        fields = {}
        for record in records:
            name = record.get('Name') or ''
            if name.startswith(CUSTOM_FIELD_PREFIX):
                fields[name] = {
                    'id': record.get('Id'),
                    'internalName': record.get('InternalName'),
                    'fieldType': record.get('FieldType'),
                }
        return fields

    # =========================================================================
    # WRITE WORKFLOW
    # =========================================================================

    def acquire_digest(self) -> str:
        """Fresh form digest; required by every write request"""
        try:
            status, payload = self._request('POST', '/_api/contextinfo', '{}')
        except TransportError as e:
            raise DigestUnavailable(f"Form digest request failed: {e}") from e

        if status != 200:
            ps_logger.log_error(ErrorCodes.PS_DIGEST_FAILED, f"contextinfo answered {status}")
            raise DigestUnavailable(f"Form digest failed: {status}", details={'status': status})
        try:
            return extract_digest(payload)
        except SchemaError as e:
            raise DigestUnavailable("Form digest not found") from e

    def checkout_project(self, project_id: str) -> str:
        """Check the project out; returns the digest for the patch that follows"""
        digest = self.acquire_digest()
        status, _ = self._request(
            'POST',
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/checkOut",
            '{}',
            {'X-RequestDigest': digest},
        )
        if status != 200:
            write_logger.log_error(ErrorCodes.WRITE_CHECKOUT, f"Checkout of {project_id} answered {status}")
            raise CheckoutFailed(f"Checkout failed: {status}", project_id=project_id, remote_status=status)
        write_logger.log_info(ErrorCodes.WRITE_CHECKOUT, f"Checked out {project_id}")
        return digest

    def _patch(self, path: str, entity_type: str, updates: Dict[str, Any], digest: str,
               project_id: str, label: str) -> None:
        # MERGE over POST: the server only honours partial updates this way
        body = {'__metadata': {'type': entity_type}, **updates}
        status, _ = self._request(
            'POST',
            path,
            body,
            {'X-RequestDigest': digest, 'X-HTTP-Method': 'MERGE', 'If-Match': '*'},
        )
        if status not in (200, 204):
            write_logger.log_error(ErrorCodes.WRITE_PATCH, f"{label} on {project_id} answered {status}")
            raise PatchFailed(f"{label} failed: {status}", project_id=project_id, remote_status=status)
        write_logger.log_info(ErrorCodes.WRITE_PATCH, f"{label} on {project_id}: {sorted(updates)}")

    def update_task(self, project_id: str, task_id: str, updates: Dict[str, Any], digest: str) -> None:
        self._patch(
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/Draft/Tasks('{_literal(task_id)}')",
            'PS.DraftTask', updates, digest, project_id, 'Update task',
        )

    def update_project_draft(self, project_id: str, updates: Dict[str, Any], digest: str) -> None:
        self._patch(
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/Draft",
            'PS.DraftProject', updates, digest, project_id, 'Update project draft',
        )

    def add_task_assignment(self, project_id: str, task_id: str, resource_id: str, digest: str) -> None:
        body = {'parameters': {'ResourceId': resource_id, 'TaskId': task_id}}
        status, _ = self._request(
            'POST',
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/Draft/Assignments/Add",
            body,
            {'X-RequestDigest': digest},
        )
        if status not in (200, 201):
            write_logger.log_error(ErrorCodes.WRITE_ASSIGNMENT, f"Add assignment on {project_id} answered {status}")
            raise AssignmentFailed(f"Add assignment failed: {status}", project_id=project_id, remote_status=status)

    def publish_project(self, project_id: str, require_confirmation: bool = False) -> PublishResult:
        """
        Publish and check the draft back in.

        Acquires its own digest: the checkout digest may belong to another
        request context by now. With require_confirmation the queue deadline
        raises QueueTimeout instead of returning confirmed=False.
        """
        digest = self.acquire_digest()
        status, payload = self._request(
            'POST',
            f"/_api/ProjectServer/Projects('{_literal(project_id)}')/Draft/publish(true)",
            '{}',
            {'X-RequestDigest': digest},
        )
        if status != 200:
            write_logger.log_error(ErrorCodes.WRITE_PUBLISH, f"Publish of {project_id} answered {status}")
            raise PublishFailed(f"Publish failed: {status}", project_id=project_id, remote_status=status)

        job_id = extract_job_id(payload)
        confirmed = False
        if job_id:
            confirmed = self.wait_for_queue(job_id)
            if not confirmed and require_confirmation:
                raise QueueTimeout(f"Publish of {project_id} not confirmed by queue", job_id=job_id)
        else:
            write_logger.log_warning(ErrorCodes.WRITE_PUBLISH, f"Publish of {project_id} returned no queue job")

        return PublishResult(project_id=project_id, job_id=job_id, confirmed=confirmed)

    def wait_for_queue(self, job_id: str, max_wait: Optional[float] = None) -> bool:
        """Poll the queue until the job settles; False once the deadline passes"""
        if not job_id:
            return False
        max_wait = self.queue_max_wait if max_wait is None else max_wait
        deadline = self._clock() + max_wait

        while self._clock() < deadline:
            try:
                status, _ = self._request('GET', f"/_api/ProjectServer/WaitForQueue('{_literal(job_id)}')")
                if status == 200:
                    write_logger.log_info(ErrorCodes.WRITE_QUEUE_SETTLED, f"Queue job {job_id} settled")
                    return True
            except TransportError as e:
                # not settled yet as far as we can tell
                logger.debug(f"Queue poll for {job_id} failed: {e}")
            self._sleep(self.queue_poll_interval)

        write_logger.log_warning(
            ErrorCodes.WRITE_QUEUE_TIMEOUT,
            f"Queue job {job_id} not confirmed within {max_wait}s; continuing unconfirmed",
        )
        return False
