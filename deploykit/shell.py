"""
Script execution, locally through bash or remotely through the ssh client.

The script travels as the ``bash -c`` argument, never on stdin, so commands
inside it that read stdin (prompts, ``cat``) get EOF instead of swallowing
the rest of the script.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import RemoteTarget
from .errors import CommandFailed
from .events import emit_event, EventTypes
from .state import stage_log_path
from .steps.base import DeployState, parse_state_marker

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]


@dataclass
class CommandResult:
    """Outcome of one script execution."""
    returncode: int
    lines: List[str] = field(default_factory=list)
    states: List[DeployState] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def last_state(self) -> Optional[DeployState]:
        return self.states[-1] if self.states else None

    def tail(self, n: int = 40) -> List[str]:
        return self.lines[-n:]

    def contains(self, text: str) -> bool:
        return any(text in line for line in self.lines)


def _kill_group(process: subprocess.Popen) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_script(argv: List[str], run_id: str, stage: str,
               cwd: Optional[str] = None, timeout: Optional[float] = None,
               on_line: Optional[LineCallback] = None) -> CommandResult:
    """
    Run ``argv`` and stream its combined output.

    Every output line is appended to ``<stage>.log`` in the run directory
    and emitted as a STAGE_LINE event. State marker lines are turned into
    DEPLOY_STATE events instead.

    Args:
        argv: Full command line, script included
        run_id: Run ID
        stage: Stage name, used for the log file and events
        cwd: Working directory for the command
        timeout: Seconds before the command and all of its children are
            killed, None to wait forever
        on_line: Called with each non-marker output line

    Returns:
        CommandResult

    Raises:
        CommandFailed: If the command cannot be started
    """
    logger.debug(f"[{stage}] running {argv[0]}")
    try:
        process = subprocess.Popen(
            argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            start_new_session=True,
        )
    except OSError as e:
        raise CommandFailed(stage, 127, [f"Failed to start {argv[0]}: {e}"]) from e

    timed_out = threading.Event()
    timer = None
    if timeout:
        def _expire():
            timed_out.set()
            _kill_group(process)
        timer = threading.Timer(timeout, _expire)
        timer.daemon = True
        timer.start()

    result = CommandResult(returncode=0)
    try:
        with open(stage_log_path(run_id, stage), "a") as log_file:
            log_file.write(f"=== {stage}: {argv[0]} ===\n")
            for line in process.stdout:
                line = line.rstrip("\n")
                log_file.write(line + "\n")
                log_file.flush()

                state = parse_state_marker(line)
                if state is not None:
                    result.states.append(state)
                    emit_event(run_id, EventTypes.DEPLOY_STATE, {"stage": stage, "state": state.value})
                    continue

                result.lines.append(line)
                if line.strip():
                    emit_event(run_id, EventTypes.STAGE_LINE, {"stage": stage, "line": line})
                if on_line:
                    on_line(line)
        process.wait()
    finally:
        if timer:
            timer.cancel()

    result.returncode = process.returncode
    result.timed_out = timed_out.is_set()
    if result.timed_out:
        logger.warning(f"[{stage}] killed after {timeout}s")
    return result


class Executor(ABC):
    """Runs a bash script somewhere."""

    @abstractmethod
    def command(self, script: str) -> List[str]:
        """Full command line that runs ``script``."""

    @property
    def cwd(self) -> Optional[str]:
        return None

    def run(self, script: str, run_id: str, stage: str, timeout: Optional[float] = None,
            on_line: Optional[LineCallback] = None) -> CommandResult:
        return run_script(self.command(script), run_id, stage, cwd=self.cwd,
                          timeout=timeout, on_line=on_line)


class LocalExecutor(Executor):

    def __init__(self, cwd: Optional[str] = None):
        self._cwd = cwd

    @property
    def cwd(self) -> Optional[str]:
        return self._cwd

    def command(self, script: str) -> List[str]:
        return ["bash", "-c", script]


class SSHExecutor(Executor):
    """Runs the script in a single ssh session using key-based auth."""

    def __init__(self, target: RemoteTarget):
        self.target = target

    def command(self, script: str) -> List[str]:
        # ssh hands the remote command to the login shell as one string
        return [
            "ssh",
            "-n",
            "-i", self.target.key_path,
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            self.target.destination,
            f"bash -c {shlex.quote(script)}",
        ]
