"""
Integration Layer Test Configuration and Fixtures

Shared fixtures for the Project Server client, CSOM bridge, data service and
API tests. Nothing here touches the network: Project Server and the bridge
are replaced by scripted sessions, time by a fake clock.
"""

import json
import pytest
from unittest.mock import MagicMock

from portfolio_system.core import config as config_module
from portfolio_system.portfolio_data.fallback_store import StaticDataStore
from portfolio_system.project_server.client import ProjectServerClient


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: exercises several components together")
    config.addinivalue_line("markers", "slow: long-running tests")
    config.addinivalue_line("markers", "critical: must-pass tests for write safety and fallback")


# =============================================================================
# KEY CONSTANTS
# =============================================================================

PS_URL = "http://ps.test/pwa"
PROJECT_ID = "a1b2c3d4-0000-1111-2222-333344445555"
TASK_ID = "task-0001"


# =============================================================================
# HTTP DOUBLES
# =============================================================================

def make_response(status=200, payload=None, text=None):
    """requests.Response stand-in with JSON or raw text body"""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    if payload is not None:
        body = json.dumps(payload)
        response.json.return_value = payload
    else:
        body = text or ''
        response.json.side_effect = ValueError("No JSON object could be decoded")
    response.text = body
    response.content = body.encode()
    return response


def odata_results(records):
    return {"d": {"results": records}}


def digest_payload(value):
    return {"d": {"GetContextWebInformation": {"FormDigestValue": value}}}


def publish_payload(job_id):
    return {"d": {"publish": {"Value": job_id}}}


class RoutedSession:
    """
    Scripted requests.Session: routes by method + URL fragment.

    The longest matching fragment wins. Each route hands out its responses in
    order and keeps repeating the last one; exceptions are raised.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, fragment, *responses):
        self.routes.append({'method': method, 'fragment': fragment, 'responses': list(responses)})
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        matches = [r for r in self.routes if r['method'] == method and r['fragment'] in url]
        if not matches:
            raise AssertionError(f"Unexpected request {method} {url}")
        route = max(matches, key=lambda r: len(r['fragment']))
        responses = route['responses']
        outcome = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def calls_to(self, fragment, method=None):
        return [c for c in self.calls if fragment in c['url'] and (method is None or c['method'] == method)]


class FakeClock:
    """Monotonic clock that only moves when sleep() is called"""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def test_config():
    """Config class for tests: PS disabled, auth off, short queue timings"""
    return config_module.get_config('test')


@pytest.fixture
def session():
    return RoutedSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ps_client(session, clock):
    """ProjectServerClient over a scripted session and fake clock"""
    return ProjectServerClient(
        PS_URL, 'svc_portfolio', 's3cret', 'CORP',
        session=session,
        queue_max_wait=60,
        queue_poll_interval=2,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def static_store():
    """Store over the packaged sample documents"""
    return StaticDataStore()


@pytest.fixture
def write_session(session):
    """Session scripted for one full successful write workflow"""
    session.add('POST', '/_api/contextinfo',
                make_response(200, digest_payload('digest-checkout')),
                make_response(200, digest_payload('digest-publish')))
    session.add('POST', '/checkOut', make_response(200, {}))
    session.add('POST', "/Draft/Tasks(", make_response(204))
    session.add('POST', "/Draft/Assignments/Add", make_response(201, {}))
    session.add('POST', "/Draft/publish(true)", make_response(200, publish_payload('job-42')))
    session.add('GET', "/WaitForQueue(", make_response(200, {}))
    return session
