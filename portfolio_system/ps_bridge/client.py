#!/usr/bin/env python3
"""
PS Bridge Client
Calls the bridge service on the Project Server VM from the main backend.
Every call has a hard timeout; a timeout is reported separately from other
transport failures so callers can tell a slow publish from a dead bridge.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from portfolio_system.core.errors import BridgeProtocolError, BridgeTimeout, TransportError
from portfolio_system.core.section_logger import ErrorCodes, bridge_logger

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 200


class BridgeClient:
    """HTTP client for the CSOM bridge"""

    def __init__(self, base_url: str, timeout: float = 120, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, **kwargs) -> 'BridgeClient':
        return cls(config.BRIDGE_URL, timeout=config.BRIDGE_TIMEOUT_SECONDS, **kwargs)

    def call_bridge(self, path: str, body: Optional[Dict[str, Any]] = None,
                    method: str = 'POST') -> Dict[str, Any]:
        """
        Send one request to the bridge and return its JSON body

        Raises:
            BridgeTimeout: no answer within the timeout
            TransportError: bridge unreachable or answered a non-2xx status
            BridgeProtocolError: bridge answered something other than JSON
        """
        url = f"{self.base_url}{path}"
        kwargs = {'headers': {'Content-Type': 'application/json'}, 'timeout': self.timeout}
        if body is not None and method != 'GET':
            kwargs['json'] = body

        bridge_logger.log_info(ErrorCodes.BRIDGE_CALL, f"{method} {path}")
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            bridge_logger.log_error(ErrorCodes.BRIDGE_TIMEOUT, f"{method} {path} timed out")
            raise BridgeTimeout(f"PS Bridge request timed out ({self.timeout:g}s)") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"PS Bridge unreachable: {e}") from e

        if not response.ok:
            snippet = (response.text or '')[:ERROR_BODY_LIMIT]
            bridge_logger.log_error(ErrorCodes.BRIDGE_HTTP_ERROR, f"{method} {path} -> {response.status_code}")
            raise TransportError(
                f"Bridge responded {response.status_code}: {snippet}",
                details={'status': response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BridgeProtocolError(
                f"Bridge returned non-JSON body: {(response.text or '')[:ERROR_BODY_LIMIT]}") from e
        if not isinstance(payload, dict):
            raise BridgeProtocolError("Bridge returned a JSON document that is not an object")
        return payload

    def health(self) -> Dict[str, Any]:
        return self.call_bridge('/health', method='GET')

    def assign(self, project_name: str, assignments: List[Dict[str, str]]) -> Dict[str, Any]:
        return self.call_bridge('/api/assign', {'projectName': project_name, 'assignments': assignments})

    def assign_all(self, project_assignments: Dict[str, List[Dict[str, str]]]) -> Dict[str, Any]:
        return self.call_bridge('/api/assign-all', {'projectAssignments': project_assignments})
