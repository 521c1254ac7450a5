#!/usr/bin/env python3
"""
Automation process runner for the CSOM bridge.

Each bridge action runs the PowerShell CSOM script once and relays the single
JSON document it prints. Standard output parsing is the only success signal:
a failed exit with a valid JSON body is still relayed (the body says whether
the action succeeded), while a clean exit with anything other than JSON is a
failure.

The process is streamed rather than buffered: output past the cap kills the
script immediately instead of being discovered after it exits.
"""

import json
import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from portfolio_system.core.errors import AutomationFailed, BridgeProtocolError
from portfolio_system.core.section_logger import ErrorCodes, automation_logger

logger = logging.getLogger(__name__)

STDERR_LOG_LIMIT = 500
OUTPUT_QUOTE_LIMIT = 300
CHUNK_SIZE = 64 * 1024
STDERR_JOIN_SECONDS = 5


@dataclass
class AutomationCommand:
    """Everything needed to launch the script, minus the per-call action"""
    interpreter: str
    script: str
    pwa_url: str
    username: str
    password: str
    domain: str
    timeout: float = 180
    max_output: int = 10 * 1024 * 1024

    def build_args(self, action: str, extra: Optional[Dict[str, Any]] = None) -> List[str]:
        extra = extra or {}
        args = [
            self.interpreter,
            '-NoProfile',
            '-ExecutionPolicy', 'Bypass',
            '-File', self.script,
            '-PwaUrl', self.pwa_url,
            '-Username', self.username,
            '-Password', self.password,
            '-Domain', self.domain,
            '-Action', action,
        ]
        if extra.get('projectName'):
            args += ['-ProjectName', extra['projectName']]
        if extra.get('assignments'):
            args += ['-Assignments', json.dumps(extra['assignments'])]
        return args


@dataclass
class _ProcessOutcome:
    stdout: bytes = b''
    stderr: bytes = b''
    error: Optional[str] = None
    overflowed: bool = False
    timed_out: bool = False


class AutomationRunner:
    """
    Runs AutomationCommand through an injectable subprocess.Popen.

    Standard output is read in chunks while the script runs; the process is
    killed as soon as it passes max_output or outlives the timeout.
    """

    def __init__(self, command: AutomationCommand, popen: Callable = subprocess.Popen):
        self.command = command
        self._popen = popen

    @classmethod
    def from_config(cls, config, **kwargs) -> 'AutomationRunner':
        command = AutomationCommand(
            interpreter=config.AUTOMATION_INTERPRETER,
            script=config.AUTOMATION_SCRIPT,
            pwa_url=config.PWA_URL,
            username=config.PS_USERNAME,
            password=config.PS_PASSWORD,
            domain=config.PS_DOMAIN,
            timeout=config.AUTOMATION_TIMEOUT_SECONDS,
            max_output=config.AUTOMATION_MAX_OUTPUT_BYTES,
        )
        return cls(command, **kwargs)

    def run_automation(self, action: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run one action; returns the parsed JSON document the script printed"""
        extra = extra or {}
        args = self.command.build_args(action, extra)
        project = f" ({extra['projectName']})" if extra.get('projectName') else ''
        automation_logger.log_info(ErrorCodes.AUTO_RUN, f"Running: {action}{project}")

        outcome = self._communicate(args)

        if outcome.stderr:
            automation_logger.log_warning(
                ErrorCodes.AUTO_STDERR, _decode(outcome.stderr)[:STDERR_LOG_LIMIT])

        if outcome.overflowed:
            message = f"output exceeded {self.command.max_output} bytes"
            automation_logger.log_error(ErrorCodes.AUTO_INVALID_OUTPUT, f"{action}{project} {message}")
            raise AutomationFailed(f"PowerShell failed: {message}")

        if outcome.timed_out:
            automation_logger.log_error(ErrorCodes.AUTO_TIMEOUT, f"{action}{project} {outcome.error}")

        output = _decode(outcome.stdout).strip()
        return self._parse_output(output, outcome.error)

    def _communicate(self, args: List[str]) -> '_ProcessOutcome':
        try:
            process = self._popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            return _ProcessOutcome(error=str(e))

        # stderr is drained concurrently with stdout
        stderr_chunks: List[bytes] = []
        stderr_reader = threading.Thread(
            target=lambda: stderr_chunks.append(process.stderr.read()), daemon=True)
        stderr_reader.start()

        timed_out = threading.Event()

        def on_timeout():
            timed_out.set()
            process.kill()

        timer = threading.Timer(self.command.timeout, on_timeout)
        timer.daemon = True
        timer.start()

        stdout = bytearray()
        overflowed = False
        try:
            while True:
                chunk = process.stdout.read1(CHUNK_SIZE)
                if not chunk:
                    break
                stdout += chunk
                if len(stdout) > self.command.max_output:
                    overflowed = True
                    process.kill()
                    break
            returncode = process.wait()
        finally:
            timer.cancel()
            process.stdout.close()

        stderr_reader.join(STDERR_JOIN_SECONDS)

        outcome = _ProcessOutcome(
            stdout=bytes(stdout[:self.command.max_output]),
            stderr=b''.join(c for c in stderr_chunks if c),
            overflowed=overflowed,
            timed_out=timed_out.is_set() and not overflowed,
        )
        if outcome.timed_out:
            outcome.error = f"timed out after {self.command.timeout}s"
        elif returncode != 0 and not overflowed:
            outcome.error = f"exit status {returncode}"
        return outcome

    def _parse_output(self, output: str, process_error: Optional[str]) -> Dict[str, Any]:
        try:
            parsed = json.loads(output)
        except ValueError:
            automation_logger.log_error(ErrorCodes.AUTO_INVALID_OUTPUT, output[:OUTPUT_QUOTE_LIMIT])
            if process_error:
                raise AutomationFailed(
                    f"PowerShell failed: {process_error}. Output: {output[:OUTPUT_QUOTE_LIMIT]}")
            raise BridgeProtocolError(f"Invalid JSON from PowerShell: {output[:OUTPUT_QUOTE_LIMIT]}")

        if not isinstance(parsed, dict):
            raise BridgeProtocolError(f"Unexpected PowerShell output: {output[:OUTPUT_QUOTE_LIMIT]}")

        if process_error and not parsed.get('success'):
            automation_logger.log_error(ErrorCodes.AUTO_REPORTED_FAILURE, str(parsed.get('message')))
        return parsed


def _decode(raw) -> str:
    if isinstance(raw, str):
        return raw
    return raw.decode('utf-8', errors='replace')
