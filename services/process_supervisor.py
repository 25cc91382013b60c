#!/usr/bin/env python3
"""
Process supervisor owning a single external process handle.

A supervisor is single use: it spawns one process, exposes its diagnostic
output as a lazy sequence of text chunks, signals it on request and reports
exactly one terminal event (``exited`` or ``failed_to_start``).
"""

import codecs
import logging
import subprocess
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from exceptions import SpawnError

ProcessListener = Callable[[str, Dict[str, Any]], None]

EVENT_STARTED = 'started'
EVENT_EXITED = 'exited'
EVENT_FAILED_TO_START = 'failed_to_start'


class ProcessSupervisor:
    """Supervises one external process."""

    def __init__(self, name: str = 'process', listener: Optional[ProcessListener] = None):
        self.name = name
        self.process: Optional[subprocess.Popen] = None
        self.command: List[str] = []
        self.returncode: Optional[int] = None
        self._listener = listener
        self._lock = threading.Lock()
        self._terminal_reported = False
        self._output_taken = False
        self._kill_sent = False
        self.logger = logging.getLogger(__name__)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    @property
    def was_killed(self) -> bool:
        return self._kill_sent

    def start(self, executable: str, args: List[str]) -> 'ProcessSupervisor':
        """Spawn the process.

        Args:
            executable: Program to run
            args: Argument list, without the executable

        Returns:
            self, for chaining

        Raises:
            SpawnError: If the executable cannot be launched
            RuntimeError: If this supervisor already started a process
        """
        if self.process is not None or self._terminal_reported:
            raise RuntimeError(f"Supervisor '{self.name}' has already been used")

        self.command = [executable, *args]
        self.logger.debug(f"[{self.name}] Starting process: {' '.join(self.command)}")
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE
            )
        except (OSError, ValueError) as e:
            error = SpawnError(executable, str(e))
            self.logger.error(f"[{self.name}] {error.message}: {e}")
            self._report_terminal(EVENT_FAILED_TO_START, {'error': error})
            raise error from e

        self.logger.info(f"[{self.name}] Process started (PID: {self.process.pid})")
        self._notify(EVENT_STARTED, {'pid': self.process.pid})
        return self

    def observe_output(self, chunk_size: int = 4096) -> Iterator[str]:
        """Return a lazy sequence of stderr text chunks, ending at process exit.

        The sequence can only be taken once.
        """
        if self.process is None:
            raise RuntimeError(f"Supervisor '{self.name}' has no process to observe")
        with self._lock:
            if self._output_taken:
                raise RuntimeError(f"Output of '{self.name}' is already being observed")
            self._output_taken = True
        return self._read_output(chunk_size)

    def _read_output(self, chunk_size: int) -> Iterator[str]:
        stream = self.process.stderr
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        try:
            while True:
                data = stream.read1(chunk_size)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    yield text
            tail = decoder.decode(b'', final=True)
            if tail:
                yield tail
        finally:
            stream.close()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process to exit.

        Returns:
            Exit code, or None if the timeout expired first
        """
        if self.process is None:
            return self.returncode
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

        self.returncode = code
        self._report_terminal(EVENT_EXITED, {'code': code})
        return code

    def request_graceful_stop(self) -> bool:
        """Send SIGTERM without waiting. Returns False if nothing was running."""
        if not self.is_running:
            return False
        try:
            self.process.terminate()
            self.logger.info(f"[{self.name}] Sent SIGTERM to PID {self.process.pid}")
            return True
        except OSError as e:
            self.logger.warning(f"[{self.name}] Could not send SIGTERM: {e}")
            return False

    def force_stop(self) -> bool:
        """Send SIGKILL without waiting. Safe to call after the process exited."""
        if not self.is_running:
            return False
        try:
            self.process.kill()
            self._kill_sent = True
            self.logger.warning(f"[{self.name}] Sent SIGKILL to PID {self.process.pid}")
            return True
        except OSError as e:
            self.logger.debug(f"[{self.name}] SIGKILL not delivered: {e}")
            return False

    def _report_terminal(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            if self._terminal_reported:
                return
            self._terminal_reported = True
        if event == EVENT_EXITED:
            self.logger.info(f"[{self.name}] Process exited with code {payload['code']}")
        self._notify(event, payload)

    def _notify(self, event: str, payload: Dict[str, Any]) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event, payload)
        except Exception as e:
            self.logger.error(f"[{self.name}] Process listener failed on '{event}': {e}", exc_info=True)
