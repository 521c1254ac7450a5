"""
PS Bridge Service Tests

Flask app exercised in-process with a stand-in AutomationRunner.
"""

import pytest
from unittest.mock import MagicMock

from portfolio_system.core.errors import AutomationFailed
from portfolio_system.ps_bridge.service import create_app


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def runner():
    runner = MagicMock()
    runner.run_automation.return_value = {'success': True, 'message': 'ok', 'data': []}
    return runner


@pytest.fixture
def client(runner, test_config):
    app = create_app(runner=runner, config=test_config)
    app.config['TESTING'] = True
    return app.test_client()


# =============================================================================
# READ ROUTES
# =============================================================================

class TestBridgeReads:

    def test_health(self, client, runner, test_config):
        """
        HAPPY PATH: Health has no side effects.
        """
        response = client.get('/health')
        body = response.get_json()

        assert response.status_code == 200
        assert body['status'] == 'ok'
        assert body['service'] == 'ps-bridge'
        assert body['pwaUrl'] == test_config.PWA_URL
        assert 'timestamp' in body
        runner.run_automation.assert_not_called()

    def test_list_projects(self, client, runner):
        response = client.get('/api/projects')

        assert response.status_code == 200
        runner.run_automation.assert_called_once_with('list-projects', None)

    def test_list_resources(self, client, runner):
        client.get('/api/resources')
        runner.run_automation.assert_called_once_with('list-resources', None)

    def test_list_tasks_decodes_project_name(self, client, runner):
        """
        EDGE: Percent-encoded project names reach the script decoded.
        """
        client.get('/api/projects/ERP%20Modernisation%20%26%20Cloud/tasks')

        runner.run_automation.assert_called_once_with('list-tasks', {'projectName': 'ERP Modernisation & Cloud'})

    def test_automation_failure_is_500(self, client, runner):
        runner.run_automation.side_effect = AutomationFailed("PowerShell failed: exit status 1. Output: ")

        response = client.get('/api/projects')

        assert response.status_code == 500
        assert response.get_json() == {
            'success': False,
            'message': 'PowerShell failed: exit status 1. Output: ',
        }


# =============================================================================
# ASSIGN
# =============================================================================

class TestAssign:

    def test_assign(self, client, runner):
        assignments = [{'resourceName': 'Sara Ali', 'taskName': 'Design'}]

        response = client.post('/api/assign', json={'projectName': 'ERP', 'assignments': assignments})

        assert response.status_code == 200
        runner.run_automation.assert_called_once_with(
            'assign', {'projectName': 'ERP', 'assignments': assignments})

    def test_missing_project_name(self, client, runner):
        response = client.post('/api/assign', json={'assignments': [{'resourceName': 'a', 'taskName': 'b'}]})

        assert response.status_code == 400
        assert response.get_json()['message'] == 'projectName is required'
        runner.run_automation.assert_not_called()

    @pytest.mark.parametrize("name", [5, ["ERP"], {"name": "ERP"}, "   ", ""])
    def test_project_name_must_be_text(self, client, runner, name):
        """
        CRITICAL: A non-string or blank name never reaches the automation argv.
        """
        response = client.post('/api/assign', json={'projectName': name,
                                                    'assignments': [{'resourceName': 'a', 'taskName': 'b'}]})

        assert response.status_code == 400
        assert response.get_json()['message'] == 'projectName is required'
        runner.run_automation.assert_not_called()

    def test_project_name_trimmed(self, client, runner):
        assignments = [{'resourceName': 'Sara Ali', 'taskName': 'Design'}]

        client.post('/api/assign', json={'projectName': '  ERP ', 'assignments': assignments})

        runner.run_automation.assert_called_once_with(
            'assign', {'projectName': 'ERP', 'assignments': assignments})

    def test_body_not_an_object(self, client, runner):
        response = client.post('/api/assign', json=[{'projectName': 'ERP'}])

        assert response.status_code == 400
        assert response.get_json()['message'] == 'request body must be a JSON object'
        runner.run_automation.assert_not_called()

    @pytest.mark.parametrize("assignments", [None, [], "Design"])
    def test_missing_or_empty_assignments(self, client, runner, assignments):
        """
        EDGE: Absent, empty or non-list assignments are 400.
        """
        response = client.post('/api/assign', json={'projectName': 'ERP', 'assignments': assignments})

        assert response.status_code == 400
        assert response.get_json()['message'] == 'assignments array is required'
        runner.run_automation.assert_not_called()

    def test_assignment_without_task_name(self, client, runner):
        response = client.post('/api/assign', json={'projectName': 'ERP',
                                                    'assignments': [{'resourceName': 'Sara Ali'}]})

        assert response.status_code == 400
        runner.run_automation.assert_not_called()

    def test_no_body(self, client):
        response = client.post('/api/assign')
        assert response.status_code == 400


# =============================================================================
# ASSIGN-ALL
# =============================================================================

class TestAssignAll:

    def test_projects_processed_in_order(self, client, runner):
        """
        CRITICAL: One automation run per project, sequential, in request order.
        """
        payload = {'projectAssignments': {
            'A': [{'resourceName': 'r1', 'taskName': 't1'}, {'resourceName': 'r2', 'taskName': 't2'}],
            'B': [{'resourceName': 'r3', 'taskName': 't3'}],
        }}

        response = client.post('/api/assign-all', json=payload)
        body = response.get_json()

        assert response.status_code == 200
        calls = runner.run_automation.call_args_list
        assert [c.args[1]['projectName'] for c in calls] == ['A', 'B']
        assert len(calls[0].args[1]['assignments']) == 2
        assert body['success'] is True
        assert body['message'] == 'Processed 2 projects: 2 succeeded'
        assert [r['projectName'] for r in body['results']] == ['A', 'B']

    def test_partial_failure(self, client, runner):
        runner.run_automation.side_effect = [
            {'success': True, 'message': 'ok'},
            AutomationFailed("PowerShell failed: exit status 1. Output: "),
        ]
        payload = {'projectAssignments': {
            'A': [{'resourceName': 'r1', 'taskName': 't1'}],
            'B': [{'resourceName': 'r3', 'taskName': 't3'}],
        }}

        body = client.post('/api/assign-all', json=payload).get_json()

        assert body['success'] is False
        assert body['message'] == 'Processed 2 projects: 1 succeeded'
        assert body['results'][1] == {
            'projectName': 'B', 'success': False,
            'message': 'PowerShell failed: exit status 1. Output: ',
        }

    def test_script_reported_failure_counts(self, client, runner):
        runner.run_automation.return_value = {'success': False, 'message': 'Resource not found'}
        payload = {'projectAssignments': {'A': [{'resourceName': 'x', 'taskName': 't'}]}}

        body = client.post('/api/assign-all', json=payload).get_json()

        assert body['success'] is False
        assert body['results'][0]['message'] == 'Resource not found'

    def test_invalid_body(self, client, runner):
        response = client.post('/api/assign-all', json={'projectAssignments': ['A']})

        assert response.status_code == 400
        assert 'projectAssignments' in response.get_json()['message']
        runner.run_automation.assert_not_called()

    def test_bad_project_entry_does_not_stop_others(self, client, runner):
        payload = {'projectAssignments': {
            'A': [],
            'B': [{'resourceName': 'r3', 'taskName': 't3'}],
        }}

        body = client.post('/api/assign-all', json=payload).get_json()

        assert runner.run_automation.call_count == 1
        assert body['results'][0] == {'projectName': 'A', 'success': False,
                                      'message': 'assignments array is required'}
        assert body['success'] is False
