"""
Exception taxonomy for the Project Server integration layer.

Read paths catch IntegrationError and degrade to static data; write paths let
these propagate to the caller unchanged. status_code is the HTTP status the
integration API answers with when the error reaches it.
"""

from typing import Any, Dict, Optional


class IntegrationError(Exception):
    """Base class for every failure raised by the integration layer"""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': self.message, 'type': type(self).__name__}
        if self.details:
            body['details'] = self.details
        return body


# Authentication (NTLM / form digest / API principal)

class AuthenticationFailure(IntegrationError):
    status_code = 401


class DigestUnavailable(AuthenticationFailure):
    """contextinfo did not answer 200 or carried no FormDigestValue"""
    status_code = 502


class PrincipalRejected(AuthenticationFailure):
    """Token verified but the principal is not on the allow-list"""
    status_code = 403


# Write workflow (checkout -> patch -> publish)

class WriteWorkflowFailure(IntegrationError):
    status_code = 502

    def __init__(self, message: str, *, project_id: Optional[str] = None,
                 remote_status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.project_id = project_id
        self.remote_status = remote_status


class CheckoutFailed(WriteWorkflowFailure):
    pass


class PatchFailed(WriteWorkflowFailure):
    pass


class PublishFailed(WriteWorkflowFailure):
    pass


class AssignmentFailed(WriteWorkflowFailure):
    pass


class QueueTimeout(IntegrationError):
    """Publish queue job did not settle before the deadline"""
    status_code = 504

    def __init__(self, message: str, *, job_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.job_id = job_id


# Transport

class TransportError(IntegrationError):
    """Connectivity failure or unexpected HTTP status from a remote surface"""
    status_code = 502


class ReadFailed(TransportError):
    """A read GET against Project Server answered something other than 200"""


class BridgeTimeout(TransportError):
    status_code = 504


# Payload shape

class BridgeProtocolError(IntegrationError):
    """Bridge or automation output was not the JSON document we expect"""
    status_code = 502


class AutomationFailed(BridgeProtocolError):
    """The automation process failed and left no parseable output"""


class SchemaError(IntegrationError):
    """An expected nested field is missing from a Project Server envelope"""
    status_code = 502


class ValidationError(IntegrationError):
    status_code = 400


class NotFound(IntegrationError):
    status_code = 404


class NotConfigured(IntegrationError):
    """A write was requested while Project Server integration is disabled"""
    status_code = 503
