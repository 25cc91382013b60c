#!/usr/bin/env python3
"""
Resource management helpers for the relay recorder.
Provides guaranteed cleanup for supervised processes and recording side files.
"""

import os
import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, List, Optional

if TYPE_CHECKING:
    from services.process_supervisor import ProcessSupervisor


logger = logging.getLogger(__name__)


@contextmanager
def supervised_process(
    executable: str,
    args: List[str],
    name: str = 'process',
    timeout: float = 10,
    factory: Optional[Callable[[str], 'ProcessSupervisor']] = None
) -> Iterator['ProcessSupervisor']:
    """
    Context manager for a supervised process with guaranteed cleanup.

    Ensures the process is terminated even if exceptions occur while it is
    being observed. Uses SIGTERM first, then escalates to SIGKILL.

    Args:
        executable: Program to run
        args: Argument list, without the executable
        name: Label used in log messages
        timeout: Maximum seconds to wait for graceful shutdown (default: 10)
        factory: Creates the supervisor from its name (default: ProcessSupervisor)

    Yields:
        ProcessSupervisor: The started supervisor

    Raises:
        SpawnError: If the executable cannot be launched

    Example:
        with supervised_process('ffmpeg', ['-i', 'in.mp4', 'out.mp4']) as proc:
            for chunk in proc.observe_output():
                pass
            code = proc.wait()
        # Process guaranteed to be gone here
    """
    if factory is None:
        from services.process_supervisor import ProcessSupervisor as factory
    supervisor = factory(name)
    supervisor.start(executable, args)
    try:
        yield supervisor
    finally:
        terminate_gracefully(supervisor, timeout)


def terminate_gracefully(supervisor: 'ProcessSupervisor', timeout: float) -> Optional[int]:
    """
    Stop a supervised process with escalating termination signals, blocking.

    Args:
        supervisor: Supervisor of the process to stop
        timeout: Maximum seconds to wait for graceful shutdown

    Returns:
        Exit code, or None if the process could not be reaped
    """
    if supervisor.process is None:
        return None

    if not supervisor.is_running:
        logger.debug(f"[{supervisor.name}] Process already terminated")
        return supervisor.wait()

    logger.info(f"[{supervisor.name}] Stopping process gracefully...")
    supervisor.request_graceful_stop()

    code = supervisor.wait(timeout=timeout)
    if code is not None:
        logger.info(f"[{supervisor.name}] Process stopped gracefully")
        return code

    logger.warning(f"[{supervisor.name}] Process did not stop within {timeout}s, force killing...")
    supervisor.force_stop()
    code = supervisor.wait(timeout=1)
    if code is None:
        logger.error(f"[{supervisor.name}] Process could not be killed - may be zombie")
    return code


def schedule_forced_termination(supervisor: 'ProcessSupervisor', timeout: float) -> threading.Timer:
    """
    Arm a timer that force-kills the process if it is still running after `timeout`.

    The caller cancels the timer once the process exits on its own.

    Args:
        supervisor: Supervisor of the process
        timeout: Seconds before SIGKILL is sent

    Returns:
        The started timer
    """
    def force_kill() -> None:
        if supervisor.is_running:
            logger.warning(f"[{supervisor.name}] Force killing process after {timeout}s timeout")
            supervisor.force_stop()

    timer = threading.Timer(timeout, force_kill)
    timer.daemon = True
    timer.name = f"{supervisor.name}-kill-timer"
    timer.start()
    return timer


def cleanup_files(paths: Iterable[str]) -> List[str]:
    """
    Remove every existing file in `paths`.

    Failures are logged and skipped so one stuck file never blocks the rest.

    Args:
        paths: Candidate file paths

    Returns:
        Paths that were removed
    """
    removed = []
    for file_path in paths:
        if not os.path.exists(file_path):
            continue
        try:
            os.remove(file_path)
            removed.append(file_path)
            logger.debug(f"[CLEANUP] Removed {file_path}")
        except OSError as e:
            logger.warning(f"[CLEANUP] Could not remove {file_path}: {e}")
    return removed
