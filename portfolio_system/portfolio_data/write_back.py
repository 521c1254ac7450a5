#!/usr/bin/env python3
"""
Write-back use cases against Project Server.

Every change runs the full draft workflow for one project, strictly in order:
checkout -> patch -> publish. Failures are recorded on the ErrorHandler and
re-raised unchanged; nothing here turns a failed write into a success.
Resource assignment tries the CSOM bridge first and only falls back to the
REST workflow when the bridge fails.

A publish whose queue job did not settle before the deadline is still a
success, but the result says so: confirmed=False plus a warning.
"""

import logging
from typing import Any, Dict, List, Optional

from portfolio_system.core.error_handler import (
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    records_write_failures,
)
from portfolio_system.core.errors import (
    BridgeProtocolError,
    IntegrationError,
    NotConfigured,
    NotFound,
    ValidationError,
)
from portfolio_system.core.section_logger import ErrorCodes, bridge_logger, write_logger
from portfolio_system.project_server.schemas import PublishResult

logger = logging.getLogger(__name__)

PROJECTS_KEY = 'projects'
UNCONFIRMED_WARNING = ("Publish was queued but not confirmed within the wait window; "
                       "changes may take a few minutes to appear")
ASSIGN_ALL_USAGE = 'projectAssignments object required: { "Project Name": [{ resourceName, taskName }] }'


def _check_percent(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
        raise ValidationError("percentComplete must be a number between 0 and 100")


class WriteBackService:
    """Write use cases; one instance per configured client set"""

    def __init__(self, ps_client=None, data_service=None, bridge=None,
                 error_handler: Optional[ErrorHandler] = None, require_confirmation: bool = False):
        self.ps_client = ps_client
        self.data_service = data_service
        self.bridge = bridge
        self.error_handler = error_handler or ErrorHandler()
        self.require_confirmation = require_confirmation

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_client(self):
        if self.ps_client is None:
            raise NotConfigured("Project Server not configured")

    def _invalidate(self):
        if self.data_service is not None:
            self.data_service.invalidate_cache(PROJECTS_KEY)

    def _publish(self, project_id: str) -> PublishResult:
        result = self.ps_client.publish_project(project_id, require_confirmation=self.require_confirmation)
        self._invalidate()
        return result

    @staticmethod
    def _result(published: PublishResult, message: str, **extra) -> Dict[str, Any]:
        body = {
            'success': True,
            'message': message,
            'confirmed': published.confirmed,
            'jobId': published.job_id,
            **extra,
        }
        if not published.confirmed:
            body['warning'] = UNCONFIRMED_WARNING
        return body

    def _patch_task(self, project_id: str, task_id: str, updates: Dict[str, Any]) -> PublishResult:
        digest = self.ps_client.checkout_project(project_id)
        self.ps_client.update_task(project_id, task_id, updates, digest)
        return self._publish(project_id)

    def _rest_assign(self, project_id: str, task_id: str, resource_id: str) -> PublishResult:
        digest = self.ps_client.checkout_project(project_id)
        self.ps_client.add_task_assignment(project_id, task_id, resource_id, digest)
        return self._publish(project_id)

    def _try_bridge_assign(self, project_name: str, resource_name: str,
                           task_name: str) -> Optional[Dict[str, Any]]:
        """Bridge result on success; None (after recording why) otherwise"""
        if self.bridge is None:
            return None
        try:
            result = self.bridge.assign(project_name, [{'resourceName': resource_name, 'taskName': task_name}])
            if result.get('success'):
                self._invalidate()
                return result
            failure = BridgeProtocolError(result.get('message') or 'Bridge assignment failed')
        except IntegrationError as e:
            failure = e

        bridge_logger.log_warning(
            ErrorCodes.BRIDGE_FALLBACK, f"PS Bridge failed, falling back to REST API: {failure}")
        self.error_handler.handle_error(
            failure, ErrorCategory.BRIDGE_CONNECTION, ErrorSeverity.MEDIUM_ALERT,
            context=f"assign {resource_name} -> {task_name} in {project_name}",
            operation="bridge_assign",
        )
        return None

    def _find_project(self, project_name: str) -> Dict[str, Any]:
        projects = self.data_service.get_projects() if self.data_service is not None else []
        for project in projects:
            if project.get('name') == project_name:
                # Static fallback records carry no Project Server id to write to
                if not project.get('psId'):
                    raise NotFound(f'Project "{project_name}" is not linked to Project Server')
                return project
        raise NotFound(f'Project "{project_name}" not found')

    @staticmethod
    def _find_task(project: Dict[str, Any], task_name: str) -> Dict[str, Any]:
        for task in project.get('tasks') or []:
            if task.get('name') == task_name:
                return task
        raise NotFound(f'Task "{task_name}" not found in "{project.get("name")}"')

    def _find_resource_id(self, resource_name: str) -> str:
        for resource in self.ps_client.list_resources():
            if resource.name == resource_name:
                return resource.id
        raise NotFound(f'Resource "{resource_name}" not found')

    # =========================================================================
    # USE CASES
    # =========================================================================

    @records_write_failures
    def update_task(self, project_id: str, task_id: str, percent_complete: Optional[float] = None,
                    fixed_cost: Optional[float] = None) -> Dict[str, Any]:
        """Update task progress and/or fixed cost, then publish"""
        self._require_client()
        updates = {}
        if percent_complete is not None:
            _check_percent(percent_complete)
            updates['PercentComplete'] = percent_complete
        if fixed_cost is not None:
            updates['FixedCost'] = fixed_cost
        if not updates:
            raise ValidationError("percentComplete or fixedCost is required")

        published = self._patch_task(project_id, task_id, updates)
        write_logger.log_info(ErrorCodes.WRITE_PUBLISH, f"Task {task_id} in {project_id} published")
        return self._result(published, 'Task updated and published')

    @records_write_failures
    def update_schedule(self, project_id: str, finish_date: str) -> Dict[str, Any]:
        self._require_client()
        if not finish_date:
            raise ValidationError("finishDate is required")

        digest = self.ps_client.checkout_project(project_id)
        self.ps_client.update_project_draft(project_id, {'FinishDate': finish_date}, digest)
        published = self._publish(project_id)
        return self._result(published, 'Schedule updated and published')

    @records_write_failures
    def assign_resource(self, project_id: str, *, resource_id: Optional[str] = None,
                        task_id: Optional[str] = None, resource_name: Optional[str] = None,
                        task_name: Optional[str] = None,
                        project_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Assign a resource to a task.

        With names (and a bridge) the CSOM bridge is tried first since it
        avoids the REST queue; any bridge failure falls through to the REST
        workflow, which needs the ids.
        """
        self._require_client()

        if resource_name and task_name and project_name:
            bridged = self._try_bridge_assign(project_name, resource_name, task_name)
            if bridged is not None:
                return {
                    'success': True,
                    'message': f"Resource assigned via CSOM: {bridged.get('message', '')}",
                    'method': 'csom-bridge',
                    'details': bridged.get('data'),
                }

        if not (resource_id and task_id):
            raise ValidationError(
                "resourceId and taskId are required when the PS Bridge cannot handle the assignment")

        published = self._rest_assign(project_id, task_id, resource_id)
        return self._result(published, 'Resource assigned and published', method='rest-api')

    @records_write_failures
    def assign_all(self, project_assignments: Dict[str, List[Dict[str, str]]]) -> Dict[str, Any]:
        """Bulk assignment through the bridge; no REST fallback for bulk"""
        if not isinstance(project_assignments, dict) or not project_assignments:
            raise ValidationError(ASSIGN_ALL_USAGE)
        if self.bridge is None:
            raise NotConfigured("PS Bridge not configured")

        result = self.bridge.assign_all(project_assignments)
        self._invalidate()
        return result

    @records_write_failures
    def execute_action(self, action_type: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Run an action proposal the user has confirmed in chat"""
        if not action_type or not isinstance(params, dict):
            raise ValidationError("Missing action type or params")

        if action_type == 'update_task_progress':
            project_name = params.get('projectName')
            task_name = params.get('taskName')
            percent = params.get('percentComplete')
            if not (project_name and task_name):
                raise ValidationError("projectName and taskName are required")
            if percent is None:
                raise ValidationError("percentComplete is required")
            _check_percent(percent)

            project = self._find_project(project_name)
            task = self._find_task(project, task_name)
            self._require_client()

            published = self._patch_task(project['psId'], task['id'], {'PercentComplete': percent})
            return self._result(
                published,
                f'Updated "{task_name}" in "{project_name}" to {percent}% complete',
                details={'projectName': project_name, 'taskName': task_name, 'percentComplete': percent},
            )

        if action_type == 'assign_resource':
            project_name = params.get('projectName')
            task_name = params.get('taskName')
            resource_name = params.get('resourceName')
            if not (project_name and task_name and resource_name):
                raise ValidationError("projectName, taskName and resourceName are required")

            details = {'projectName': project_name, 'taskName': task_name, 'resourceName': resource_name}
            message = f'Assigned {resource_name} to "{task_name}" in "{project_name}"'

            if self._try_bridge_assign(project_name, resource_name, task_name) is not None:
                return {'success': True, 'message': message, 'details': details, 'method': 'csom-bridge'}

            self._require_client()
            project = self._find_project(project_name)
            task = self._find_task(project, task_name)
            resource_id = self._find_resource_id(resource_name)
            published = self._rest_assign(project['psId'], task['id'], resource_id)
            return self._result(published, message, details=details, method='rest-api')

        raise ValidationError(f"Unknown action type: {action_type}")

    def bridge_health(self) -> Dict[str, Any]:
        """Bridge reachability; never raises"""
        if self.bridge is None:
            return {'available': False, 'error': 'PS Bridge not configured'}
        try:
            return {'available': True, **self.bridge.health()}
        except IntegrationError as e:
            return {'available': False, 'error': e.message}
