"""
core/transports.py -- How a PowerShell query reaches a target.

The Collector speaks to every target through the same two-method interface:
run(script, timeout, cancel_event) returns the script's stdout, close()
releases whatever the transport holds. Which transport is used is decided
by the Collector, never by its callers.

  LocalTransport  -- runs PowerShell in a child process on this machine.
                     Cancellation kills the child process.
  WinRMTransport  -- runs PowerShell on a remote host through pywinrm.
                     Output is received in short WinRM operations so the
                     deadline and the cancel event are checked between them.

Every failure is raised as QueryError. The Collector decides whether that
means "this fact group is unavailable" or "the target is unreachable".
"""

import base64
import logging
import os
import re
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
import winrm
from winrm.exceptions import WinRMError, WinRMOperationTimeoutError, WinRMTransportError

logger = logging.getLogger("devdisco.transport")

# How often a running local PowerShell process is checked for cancellation.
_POLL_SECONDS = 0.25


class QueryError(Exception):
    """A single script run failed (spawn error, non-zero exit, timeout, network)."""


class QueryCancelled(QueryError):
    """The caller's cancel event fired while the query was pending or running."""


class Transport(ABC):
    """One open channel to one target."""

    def __init__(self, target: str) -> None:
        self.target = target

    @abstractmethod
    def run(self, script: str, timeout: float, cancel_event: Optional[threading.Event] = None) -> str:
        """Run a PowerShell script and return its decoded stdout."""

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------


def _default_powershell() -> str:
    return "powershell.exe" if os.name == "nt" else "pwsh"


class LocalTransport(Transport):
    def __init__(self, target: str, executable: Optional[str] = None) -> None:
        super().__init__(target)
        self.executable = executable or _default_powershell()

    def run(self, script: str, timeout: float, cancel_event: Optional[threading.Event] = None) -> str:
        cmd = [self.executable, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise QueryError(f"cannot start {self.executable}: {exc}") from exc

        deadline = time.monotonic() + timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                _kill(proc)
                raise QueryCancelled("cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                raise QueryError(f"timed out after {timeout:.0f}s")
            try:
                stdout, stderr = proc.communicate(timeout=min(remaining, _POLL_SECONDS))
                break
            except subprocess.TimeoutExpired:
                continue

        if proc.returncode != 0:
            raise QueryError((stderr or "").strip() or f"exit status {proc.returncode}")
        return stdout or ""


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    # Reap the child and drain its pipes
    proc.communicate()


# ---------------------------------------------------------------------------
# WinRM
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WinRMOptions:
    port: int = 5985
    use_ssl: bool = False
    verify_ssl: bool = True
    transport: str = "ntlm"
    username: str = ""
    password: str = ""

    def endpoint(self, host: str) -> str:
        protocol = "https" if self.use_ssl else "http"
        return f"{protocol}://{host}:{self.port}/wsman"


# Longest single WinRM receive; bounds how late a deadline or cancel is noticed.
_RECEIVE_SECONDS = 5

_WINRM_ERRORS = (WinRMError, WinRMTransportError, WinRMOperationTimeoutError, requests.exceptions.RequestException)


def _encode_command(script: str) -> str:
    encoded = base64.b64encode(script.encode("utf_16_le")).decode("ascii")
    return f"powershell -NoProfile -NonInteractive -EncodedCommand {encoded}"


def _clean_clixml(stderr: str) -> str:
    """Plain text of the error records in a PowerShell CLIXML stream."""
    if not stderr.startswith("#< CLIXML"):
        return stderr
    lines = re.findall(r'<S S="Error">(.*?)</S>', stderr, re.DOTALL)
    return "".join(lines).replace("_x000D__x000A_", "\n").strip()


class WinRMTransport(Transport):
    """Remote PowerShell over WinRM.

    Drives winrm.Protocol directly instead of Session.run_ps: pywinrm's own
    output loop retries operation timeouts forever, so a hung host would
    never give control back. Here every receive is one short WinRM operation
    and the loop stops at the deadline or when the cancel event is set.
    """

    def __init__(self, target: str, options: WinRMOptions) -> None:
        super().__init__(target)
        self.options = options

    def _protocol(self) -> winrm.Protocol:
        # pywinrm requires the HTTP read timeout to exceed the operation timeout
        return winrm.Protocol(
            self.options.endpoint(self.target),
            transport=self.options.transport,
            username=self.options.username,
            password=self.options.password,
            server_cert_validation="validate" if self.options.verify_ssl else "ignore",
            operation_timeout_sec=_RECEIVE_SECONDS,
            read_timeout_sec=_RECEIVE_SECONDS + 10,
        )

    def run(self, script: str, timeout: float, cancel_event: Optional[threading.Event] = None) -> str:
        deadline = time.monotonic() + timeout
        if cancel_event is not None and cancel_event.is_set():
            raise QueryCancelled("cancelled")

        protocol = self._protocol()
        shell_id = command_id = None
        stdout, stderr = [], []
        try:
            shell_id = protocol.open_shell()
            command_id = protocol.run_command(shell_id, _encode_command(script))
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise QueryCancelled("cancelled")
                if time.monotonic() >= deadline:
                    raise QueryError(f"timed out after {timeout:.0f}s")
                try:
                    out, err, status_code, done = protocol.get_command_output_raw(shell_id, command_id)
                except WinRMOperationTimeoutError:
                    # No output within one receive; the command is still running
                    continue
                stdout.append(out)
                stderr.append(err)
                if done:
                    break
        except _WINRM_ERRORS as exc:
            raise QueryError(str(exc) or exc.__class__.__name__) from exc
        finally:
            self._release(protocol, shell_id, command_id)

        if status_code != 0:
            message = _clean_clixml(b"".join(stderr).decode("utf-8", errors="replace").strip())
            raise QueryError(message or f"exit status {status_code}")
        return b"".join(stdout).decode("utf-8", errors="replace")

    def _release(self, protocol: winrm.Protocol, shell_id: Optional[str], command_id: Optional[str]) -> None:
        """Stop the remote command and close its shell. Failures are logged only."""
        try:
            if command_id is not None:
                protocol.cleanup_command(shell_id, command_id)
            if shell_id is not None:
                protocol.close_shell(shell_id)
        except _WINRM_ERRORS as exc:
            logger.debug("%s: WinRM shell cleanup failed: %s", self.target, exc)
