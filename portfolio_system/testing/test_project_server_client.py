"""
Project Server Client Tests

Covers:
- Read endpoints and the OData envelope
- Write workflow: digest -> checkout -> patch -> publish -> queue wait
- Queue polling (best effort, silent timeout)
- Transport failures
"""

import json

import pytest
import requests
from unittest.mock import patch

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
from portfolio_system.project_server.client import ProjectServerClient
from conftest import (
    PROJECT_ID,
    PS_URL,
    TASK_ID,
    digest_payload,
    make_response,
    odata_results,
    publish_payload,
)


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestClientSetup:

    def test_session_signed_with_domain_credential(self):
        """
        HAPPY PATH: Default session authenticates as DOMAIN\\user over NTLM.
        """
        with patch('portfolio_system.project_server.client.HttpNtlmAuth') as auth_cls:
            client = ProjectServerClient(PS_URL + '/', 'svc', 'pw', 'CORP')

        auth_cls.assert_called_once_with('CORP\\svc', 'pw')
        assert client.session.auth is auth_cls.return_value
        assert client.base_url == PS_URL

    def test_session_without_domain(self):
        with patch('portfolio_system.project_server.client.HttpNtlmAuth') as auth_cls:
            ProjectServerClient(PS_URL, 'svc', 'pw')

        auth_cls.assert_called_once_with('svc', 'pw')

    def test_from_config(self, test_config):
        client = ProjectServerClient.from_config(test_config)
        assert client.base_url == test_config.PS_URL.rstrip('/')
        assert client.queue_max_wait == test_config.QUEUE_MAX_WAIT_SECONDS


# =============================================================================
# READS
# =============================================================================

class TestReads:

    def test_list_projects(self, ps_client, session):
        """
        HAPPY PATH: Projects come back typed, dates cut to the day.
        """
        session.add('GET', '/Projects?$select=', make_response(200, odata_results([
            {'Id': PROJECT_ID, 'Name': 'ERP Modernisation', 'PercentComplete': 40,
             'Description': 'Status: In Progress', 'StartDate': '2025-01-15T08:00:00',
             'FinishDate': '2026-06-30T17:00:00'},
        ])))

        projects = ps_client.list_projects()

        assert len(projects) == 1
        assert projects[0].id == PROJECT_ID
        assert projects[0].percent_complete == 40
        assert projects[0].start_date == '2025-01-15'
        assert projects[0].finish_date == '2026-06-30'

        call = session.calls[0]
        assert '$select=Id,Name,PercentComplete,Description,StartDate,FinishDate' in call['url']
        assert call['headers']['Accept'] == 'application/json;odata=verbose'

    def test_list_tasks(self, ps_client, session):
        session.add('GET', '/Tasks?$select=', make_response(200, odata_results([
            {'Id': 't1', 'Name': 'Design', 'PercentComplete': 50, 'FixedCost': 1000,
             'Start': '2025-02-01T08:00:00', 'Finish': None},
        ])))

        tasks = ps_client.list_tasks(PROJECT_ID)

        assert tasks[0].fixed_cost == 1000
        assert tasks[0].realized_cost == 500
        assert tasks[0].finish_date == ''
        assert f"Projects('{PROJECT_ID}')/Tasks" in session.calls[0]['url']

    def test_list_resources(self, ps_client, session):
        session.add('GET', '/EnterpriseResources', make_response(200, odata_results([
            {'Id': 'r1', 'Name': 'Sara Ali'},
        ])))

        resources = ps_client.list_resources()

        assert [r.to_dict() for r in resources] == [{'id': 'r1', 'name': 'Sara Ali'}]

    def test_list_custom_fields_only_portfolio_fields(self, ps_client, session):
        """
        HAPPY PATH: Only EPM_ fields are returned, keyed by name.
        """
        session.add('GET', '/CustomFields', make_response(200, odata_results([
            {'Name': 'EPM_Health', 'Id': 'cf1', 'InternalName': 'Custom_x1', 'FieldType': 21},
            {'Name': 'Cost Centre', 'Id': 'cf2', 'InternalName': 'Custom_x2', 'FieldType': 21},
        ])))

        fields = ps_client.list_custom_fields()

        assert fields == {'EPM_Health': {'id': 'cf1', 'internalName': 'Custom_x1', 'fieldType': 21}}

    def test_read_non_200_raises(self, ps_client, session):
        session.add('GET', '/Projects?$select=', make_response(401, text='Unauthorized'))

        with pytest.raises(ReadFailed):
            ps_client.list_projects()

    def test_envelope_without_results_raises_schema_error(self, ps_client, session):
        """
        EDGE: Missing d.results fails fast instead of returning None.
        """
        session.add('GET', '/Projects?$select=', make_response(200, {'d': {}}))

        with pytest.raises(SchemaError):
            ps_client.list_projects()

    def test_connection_error_becomes_transport_error(self, ps_client, session):
        session.add('GET', '/Projects?$select=', requests.exceptions.ConnectionError("refused"))

        with pytest.raises(TransportError):
            ps_client.list_projects()

    def test_test_connection(self, ps_client, session):
        session.add('GET', '/Projects?$top=1', make_response(200, odata_results([])))
        assert ps_client.test_connection() is True

    def test_test_connection_unreachable(self, ps_client, session):
        """
        EDGE: test_connection reports False instead of raising.
        """
        session.add('GET', '/Projects?$top=1', requests.exceptions.ConnectTimeout("slow"))
        assert ps_client.test_connection() is False


# =============================================================================
# WRITE WORKFLOW
# =============================================================================

class TestDigest:

    def test_acquire_digest(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('0x1234')))

        assert ps_client.acquire_digest() == '0x1234'
        assert session.calls[0]['data'] == '{}'

    def test_digest_non_200(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(403, text='Forbidden'))

        with pytest.raises(DigestUnavailable):
            ps_client.acquire_digest()

    def test_digest_field_missing(self, ps_client, session):
        """
        EDGE: 200 without FormDigestValue is still a digest failure.
        """
        session.add('POST', '/_api/contextinfo', make_response(200, {'d': {'GetContextWebInformation': {}}}))

        with pytest.raises(DigestUnavailable):
            ps_client.acquire_digest()


class TestWriteWorkflow:

    def test_checkout_sends_digest_header(self, ps_client, write_session):
        digest = ps_client.checkout_project(PROJECT_ID)

        assert digest == 'digest-checkout'
        checkout = write_session.calls_to('/checkOut')[0]
        assert checkout['headers']['X-RequestDigest'] == 'digest-checkout'

    def test_checkout_failure(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('d')))
        session.add('POST', '/checkOut', make_response(409, text='Checked out to another user'))

        with pytest.raises(CheckoutFailed) as exc_info:
            ps_client.checkout_project(PROJECT_ID)
        assert exc_info.value.remote_status == 409
        assert exc_info.value.project_id == PROJECT_ID

    def test_update_task_uses_merge_override(self, ps_client, write_session):
        """
        HAPPY PATH: Patch is POST + X-HTTP-Method: MERGE + If-Match: *.
        """
        ps_client.update_task(PROJECT_ID, TASK_ID, {'PercentComplete': 75}, 'digest-x')

        call = write_session.calls_to("/Draft/Tasks(")[0]
        assert call['method'] == 'POST'
        assert call['headers']['X-HTTP-Method'] == 'MERGE'
        assert call['headers']['If-Match'] == '*'
        assert call['headers']['X-RequestDigest'] == 'digest-x'
        assert json.loads(call['data']) == {
            '__metadata': {'type': 'PS.DraftTask'},
            'PercentComplete': 75,
        }

    @pytest.mark.parametrize("status", [200, 204])
    def test_patch_accepts_200_and_204(self, ps_client, session, status):
        session.add('POST', "/Draft/Tasks(", make_response(status))
        ps_client.update_task(PROJECT_ID, TASK_ID, {'FixedCost': 10}, 'd')

    def test_patch_failure(self, ps_client, session):
        session.add('POST', "/Draft/Tasks(", make_response(400, text='bad field'))

        with pytest.raises(PatchFailed):
            ps_client.update_task(PROJECT_ID, TASK_ID, {'Bogus': 1}, 'd')

    def test_update_project_draft(self, ps_client, session):
        session.add('POST', "')/Draft", make_response(204))

        ps_client.update_project_draft(PROJECT_ID, {'FinishDate': '2026-09-30'}, 'd')

        body = json.loads(session.calls[0]['data'])
        assert body['__metadata'] == {'type': 'PS.DraftProject'}
        assert session.calls[0]['url'].endswith(f"Projects('{PROJECT_ID}')/Draft")

    def test_add_task_assignment(self, ps_client, write_session):
        ps_client.add_task_assignment(PROJECT_ID, TASK_ID, 'res-1', 'd')

        call = write_session.calls_to('/Assignments/Add')[0]
        assert json.loads(call['data']) == {'parameters': {'ResourceId': 'res-1', 'TaskId': TASK_ID}}

    def test_add_task_assignment_failure(self, ps_client, session):
        session.add('POST', '/Assignments/Add', make_response(500, text='boom'))

        with pytest.raises(AssignmentFailed):
            ps_client.add_task_assignment(PROJECT_ID, TASK_ID, 'res-1', 'd')

    def test_publish_uses_fresh_digest(self, ps_client, write_session):
        """
        CRITICAL: Publish acquires its own digest, distinct from checkout's.
        """
        checkout_digest = ps_client.checkout_project(PROJECT_ID)
        ps_client.update_task(PROJECT_ID, TASK_ID, {'PercentComplete': 10}, checkout_digest)
        result = ps_client.publish_project(PROJECT_ID)

        publish = write_session.calls_to('/Draft/publish(true)')[0]
        assert len(write_session.calls_to('/_api/contextinfo')) == 2
        assert publish['headers']['X-RequestDigest'] == 'digest-publish'
        assert publish['headers']['X-RequestDigest'] != checkout_digest
        assert result.job_id == 'job-42'
        assert result.confirmed is True

    def test_full_sequence_order(self, ps_client, write_session):
        """
        CRITICAL: Each state transition is its own call, in order.
        """
        digest = ps_client.checkout_project(PROJECT_ID)
        ps_client.update_task(PROJECT_ID, TASK_ID, {'PercentComplete': 10}, digest)
        ps_client.publish_project(PROJECT_ID)

        sequence = [c['url'].split('/_api/')[1].split('(')[0] for c in write_session.calls]
        assert sequence == [
            'contextinfo', 'ProjectServer/Projects', 'ProjectServer/Projects',
            'contextinfo', 'ProjectServer/Projects', 'ProjectServer/WaitForQueue',
        ]
        assert '/checkOut' in write_session.calls[1]['url']
        assert '/Draft/Tasks(' in write_session.calls[2]['url']
        assert '/Draft/publish(true)' in write_session.calls[4]['url']

    def test_publish_failure(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('d')))
        session.add('POST', '/Draft/publish(true)', make_response(500, text='queue down'))

        with pytest.raises(PublishFailed):
            ps_client.publish_project(PROJECT_ID)

    def test_publish_without_job_id_is_unconfirmed(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('d')))
        session.add('POST', '/Draft/publish(true)', make_response(200, {'d': {}}))

        result = ps_client.publish_project(PROJECT_ID)

        assert result.job_id is None
        assert result.confirmed is False
        assert session.calls_to('WaitForQueue') == []


# =============================================================================
# QUEUE WAIT
# =============================================================================

class TestQueueWait:

    def test_settles_after_a_few_polls(self, ps_client, session, clock):
        session.add('GET', '/WaitForQueue(', make_response(500), make_response(500), make_response(200))

        assert ps_client.wait_for_queue('job-1') is True
        assert len(session.calls) == 3
        assert clock.sleeps == [2, 2]

    def test_poll_exception_is_retried(self, ps_client, session):
        """
        EDGE: A poll that throws counts as "not yet", not as fatal.
        """
        session.add('GET', '/WaitForQueue(',
                    requests.exceptions.ConnectionError("reset"),
                    make_response(200))

        assert ps_client.wait_for_queue('job-1') is True

    def test_timeout_is_silent(self, ps_client, session, clock):
        """
        CRITICAL: Deadline passes -> False, no exception, ~every 2s for 60s.
        """
        session.add('GET', '/WaitForQueue(', make_response(500))

        assert ps_client.wait_for_queue('job-1') is False
        assert len(session.calls) == 30
        assert sum(clock.sleeps) == 60

    def test_publish_unconfirmed_by_default(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('d')))
        session.add('POST', '/Draft/publish(true)', make_response(200, publish_payload('job-9')))
        session.add('GET', '/WaitForQueue(', make_response(500))

        result = ps_client.publish_project(PROJECT_ID)

        assert result.confirmed is False
        assert result.to_dict() == {'projectId': PROJECT_ID, 'jobId': 'job-9', 'confirmed': False}

    def test_publish_requiring_confirmation_raises(self, ps_client, session):
        session.add('POST', '/_api/contextinfo', make_response(200, digest_payload('d')))
        session.add('POST', '/Draft/publish(true)', make_response(200, publish_payload('job-9')))
        session.add('GET', '/WaitForQueue(', make_response(500))

        with pytest.raises(QueueTimeout) as exc_info:
            ps_client.publish_project(PROJECT_ID, require_confirmation=True)
        assert exc_info.value.job_id == 'job-9'
