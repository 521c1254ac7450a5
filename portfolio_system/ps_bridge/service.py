"""
PS Bridge HTTP Service
Flask wrapper that runs on the Project Server VM and relays CSOM automation
(listing and bulk resource assignment) to the main backend over HTTP.
Assignments go through CSOM because the REST write path queues every change.
"""
from flask import Flask, request, jsonify
from pydantic import ValidationError as ModelValidationError
import logging
from datetime import datetime, timezone

from portfolio_system.core.config import get_config
from portfolio_system.core.errors import IntegrationError
from portfolio_system.core.section_logger import ErrorCodes, bridge_logger
from portfolio_system.ps_bridge.automation import AutomationRunner
from portfolio_system.ps_bridge.models import AssignRequest

logger = logging.getLogger(__name__)

ASSIGN_ALL_USAGE = 'projectAssignments object is required: { "Project Name": [{ resourceName, taskName }] }'


def _failure(message, status=500):
    return jsonify({"success": False, "message": message}), status


def _parse_assign_request(data):
    """Validate one project's batch; returns (AssignRequest, None) or (None, message)"""
    try:
        return AssignRequest.model_validate(data), None
    except ModelValidationError as e:
        first = e.errors()[0]
        loc = first["loc"]
        if not loc:
            return None, "request body must be a JSON object"
        if loc == ("projectName",):
            return None, "projectName is required"
        if loc == ("assignments",):
            return None, "assignments array is required"
        return None, f"each assignment needs resourceName and taskName: {first['msg']}"


def _assign_project(runner, project_name, assignments):
    """Run one project's assignments; failures become a result entry"""
    try:
        result = runner.run_automation('assign', {
            'projectName': project_name,
            'assignments': assignments,
        })
        return {"projectName": project_name, **result}
    except IntegrationError as e:
        return {"projectName": project_name, "success": False, "message": e.message}


def create_app(runner=None, config=None):
    """Build the bridge app; runner defaults to one built from config"""
    config = config or get_config()
    runner = runner or AutomationRunner.from_config(config)

    app = Flask(__name__)
    app.config['PWA_URL'] = config.PWA_URL

    def relay(action, extra=None):
        try:
            return jsonify(runner.run_automation(action, extra))
        except IntegrationError as e:
            logger.error(f"{action} failed: {e}")
            return _failure(e.message)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            "status": "ok",
            "service": "ps-bridge",
            "pwaUrl": app.config['PWA_URL'],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route('/api/projects', methods=['GET'])
    def list_projects():
        return relay('list-projects')

    @app.route('/api/resources', methods=['GET'])
    def list_resources():
        return relay('list-resources')

    @app.route('/api/projects/<path:name>/tasks', methods=['GET'])
    def list_tasks(name):
        # Flask has already percent-decoded the path segment
        return relay('list-tasks', {'projectName': name})

    @app.route('/api/assign', methods=['POST'])
    def assign():
        """
        Assign resources to tasks in one project
        Expected JSON:
        {
            "projectName": "ERP Modernisation",
            "assignments": [{"resourceName": "Sara Ali", "taskName": "Design"}]
        }
        """
        data = request.get_json(silent=True)
        if data is None:
            data = {}

        parsed, problem = _parse_assign_request(data)
        if problem:
            return _failure(problem, 400)

        return relay('assign', {
            'projectName': parsed.projectName,
            'assignments': data['assignments'],
        })

    @app.route('/api/assign-all', methods=['POST'])
    def assign_all():
        """Assign across many projects, one project at a time"""
        data = request.get_json(silent=True) or {}
        project_assignments = data.get('projectAssignments')

        if not isinstance(project_assignments, dict):
            return _failure(ASSIGN_ALL_USAGE, 400)

        results = []
        # Sequential: each project occupies its own queue job on the server
        for project_name, assignments in project_assignments.items():
            parsed, problem = _parse_assign_request({'projectName': project_name, 'assignments': assignments})
            if problem:
                results.append({"projectName": project_name, "success": False, "message": problem})
                continue
            logger.info(f"Processing {project_name}: {len(parsed.assignments)} assignments...")
            results.append(_assign_project(runner, project_name, assignments))

        succeeded = sum(1 for r in results if r.get('success'))
        return jsonify({
            "success": succeeded == len(project_assignments),
            "message": f"Processed {len(project_assignments)} projects: {succeeded} succeeded",
            "results": results,
        })

    return app


def main():
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    for issue in config.validate_config():
        logger.warning(f"Config: {issue}")

    user = f"{config.PS_DOMAIN}\\{config.PS_USERNAME}" if config.PS_DOMAIN else config.PS_USERNAME
    bridge_logger.log_info(ErrorCodes.BRIDGE_STARTUP, "PS Bridge Server starting")
    logger.info(f"Port:     {config.BRIDGE_PORT}")
    logger.info(f"PWA URL:  {config.PWA_URL}")
    logger.info(f"User:     {user}")
    logger.info(f"Script:   {config.AUTOMATION_SCRIPT}")
    logger.info(f"Ready at: http://localhost:{config.BRIDGE_PORT}/health")

    app = create_app(config=config)
    app.run(host=config.BRIDGE_HOST, port=config.BRIDGE_PORT)


if __name__ == '__main__':
    main()
