#!/usr/bin/env python3
"""
Process Runner

Starts shell commands as real OS processes and decides, per command, whether
the caller gets a finished result or a handle to a still-running process.

Every command races its own exit against a timer:
- the process exits (or fails) first -> SyncResult with the full output
- the timer fires first             -> AsyncHandle; the process keeps running
                                        in the background under its task id
- timeout == 0                      -> AsyncHandle immediately

The race watches the shell's own exit. A backgrounded child may keep the pipes
open after the shell is gone; output is then collected for a short while only.

Output is pumped into per-process buffers the whole time. Every read drains
the buffers, so each chunk of output is delivered to the model exactly once,
whether through the AsyncHandle, shellMessage, or the final SyncResult.

Processes are started in their own session so signals reach the whole
process group (pipelines, subshells).

Usage:
    runner = ProcessRunner(registry)
    result = await runner.start("ls -la", timeout=10)
    if result.mode == "async":
        await runner.send_stdin(result.shell_id, "y")
        output = await runner.read_output(result.shell_id)
"""

import asyncio
import base64
import logging
import os
import signal
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from agent.errors import ProcessError
from tools.background import BackgroundTaskRegistry, TaskKind, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
KILL_GRACE_PERIOD = 0.5
STDIN_SETTLE_DELAY = 0.3
READ_SETTLE_DELAY = 0.1
READ_CHUNK_SIZE = 4096
# How long output pumps may keep reading after the shell has exited.
OUTPUT_SETTLE_TIMEOUT = 1.0

# Signals that end the process from the user's point of view.
TERMINATING_SIGNALS = {"SIGTERM", "SIGKILL", "SIGINT"}

IS_WINDOWS = os.name == "nt"


@dataclass
class ProcessState:
    command: str
    process: Optional[asyncio.subprocess.Process] = None
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)
    completed: bool = False
    signaled: bool = False
    exit_code: Optional[int] = None
    exit_signal: Optional[str] = None
    show_stdin: bool = False
    show_stdout: bool = False
    watcher: Optional[asyncio.Task] = None
    exited: Optional[asyncio.Future] = None

    def drain(self):
        """Return and clear buffered (stdout, stderr)."""
        out, err = "".join(self.stdout), "".join(self.stderr)
        self.stdout.clear()
        self.stderr.clear()
        return out, err


@dataclass
class SyncResult:
    stdout: str
    stderr: str
    exit_code: int
    error: Optional[str] = None
    mode: str = "sync"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "mode": self.mode,
            "stdout": self.stdout.strip(),
            "stderr": self.stderr.strip(),
            "exitCode": self.exit_code,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class AsyncHandle:
    shell_id: str
    stdout: str = ""
    stderr: str = ""
    mode: str = "async"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "shellId": self.shell_id,
            "stdout": self.stdout.strip(),
            "stderr": self.stderr.strip(),
        }


def build_shell_command(command: str, stdin_content: Optional[str] = None) -> str:
    """
    Wrap `command` so `stdin_content` arrives on its stdin.

    The content travels base64 encoded so quoting and newlines in it never
    reach the shell parser. Literal "\\n" and "\\t" sequences are expanded
    first since models tend to send escaped text.
    """
    if stdin_content is None:
        return command

    content = stdin_content.replace("\\n", "\n").replace("\\t", "\t")
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")

    if IS_WINDOWS:
        return (
            "powershell -Command \"[System.Text.Encoding]::UTF8.GetString("
            f"[System.Convert]::FromBase64String('{encoded}')) | {command}\""
        )
    return f"echo \"{encoded}\" | base64 -d | {command}"


def _describe_exit(code: int) -> str:
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = str(-code)
        return f"Process exited with code 1 and signal {name}"
    return f"Process exited with code {code}"


def parse_signal(name: str) -> signal.Signals:
    """Map "SIGTERM" (or "term", "sigterm") to the platform's signal."""
    key = name.strip().upper()
    if not key.startswith("SIG"):
        key = "SIG" + key
    try:
        return signal.Signals[key]
    except KeyError:
        raise ValueError(f"Unknown signal: {name}") from None


def _signal_process(state: ProcessState, sig: int):
    """Deliver `sig` to the process group (POSIX) or the process (Windows)."""
    proc = state.process
    if proc is None:
        raise ProcessError(f"Process for '{state.command}' was never started")
    if IS_WINDOWS:
        if sig == signal.SIGTERM or sig == getattr(signal, "SIGKILL", None):
            proc.kill()
        else:
            proc.send_signal(sig)
        return
    # start_new_session makes the shell a group leader, so pgid == pid even
    # after the shell itself has been reaped.
    os.killpg(proc.pid, sig)


class ShellReclaimer:
    """SIGTERM, a short grace period, then SIGKILL."""

    def __init__(self, state: ProcessState, grace_period: float = KILL_GRACE_PERIOD):
        self.state = state
        self.grace_period = grace_period

    async def reclaim(self):
        # The whole group is signalled even when the shell has already exited;
        # ProcessLookupError means no member of the group is left.
        state = self.state
        state.signaled = True
        try:
            _signal_process(state, signal.SIGTERM)
        except ProcessLookupError:
            return

        if state.watcher is not None:
            await asyncio.wait({state.watcher}, timeout=self.grace_period)
        else:
            await asyncio.sleep(self.grace_period)

        try:
            _signal_process(state, getattr(signal, "SIGKILL", signal.SIGTERM))
        except ProcessLookupError:
            pass

    def kill_now(self):
        if self.state.process is None:
            return
        self.state.signaled = True
        try:
            _signal_process(self.state, getattr(signal, "SIGKILL", signal.SIGTERM))
        except ProcessLookupError:
            pass


class ProcessRunner:
    """Owns the ProcessState of every shell one agent has started."""

    def __init__(self, registry: BackgroundTaskRegistry, cwd: Optional[str] = None,
                 log: Optional[logging.Logger] = None):
        self.registry = registry
        self.cwd = cwd
        self.log = log or logger
        self._processes: Dict[str, ProcessState] = {}

    def get(self, shell_id: str) -> Optional[ProcessState]:
        return self._processes.get(shell_id)

    def _require(self, shell_id: str) -> ProcessState:
        state = self._processes.get(shell_id)
        if state is None:
            raise ProcessError(f"No process found with ID {shell_id}")
        return state

    # =========================================================================
    # Start
    # =========================================================================

    async def start(
        self,
        command: str,
        timeout: float = DEFAULT_TIMEOUT,
        stdin_content: Optional[str] = None,
        description: str = "",
        show_stdin: bool = False,
        show_stdout: bool = False,
    ) -> Union[SyncResult, AsyncHandle]:
        """
        Start `command` and race its exit against `timeout` seconds.

        Args:
            command: Shell command line
            timeout: Seconds to wait for a synchronous result; 0 returns a
                     handle immediately
            stdin_content: Text piped to the command's stdin
            description: Human-readable purpose, kept in task metadata
            show_stdin: Log everything written to stdin
            show_stdout: Log output as it arrives

        Returns:
            SyncResult if the process finished in time, otherwise AsyncHandle
        """
        shell_id = self.registry.register(
            TaskKind.SHELL, {"command": command, "description": description}
        )
        state = ProcessState(command=command, show_stdin=show_stdin, show_stdout=show_stdout)
        self._processes[shell_id] = state

        if show_stdin and stdin_content is not None:
            self.log.info("[%s] stdin: %s", shell_id[:8], stdin_content)

        try:
            state.process = await asyncio.create_subprocess_shell(
                build_shell_command(command, stdin_content),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                start_new_session=not IS_WINDOWS,
            )
        except (OSError, ValueError) as e:
            self.log.error("Failed to start '%s': %s", command, e)
            state.completed = True
            state.exit_code = 1
            self.registry.update_status(shell_id, TaskStatus.ERROR, {"error": str(e)})
            return SyncResult(stdout="", stderr="", exit_code=1, error=str(e))

        self.registry.attach(shell_id, ShellReclaimer(state))
        state.exited = asyncio.get_running_loop().create_future()
        state.watcher = asyncio.ensure_future(self._watch(shell_id, state))

        if timeout <= 0:
            return AsyncHandle(shell_id=shell_id)

        done, _ = await asyncio.wait({state.exited}, timeout=timeout)
        if state.exited in done:
            # The watcher bounds its own wait for trailing output.
            await state.watcher
            return self._sync_result(state)

        stdout, stderr = state.drain()
        self.log.debug("[%s] still running after %ss, continuing in background", shell_id[:8], timeout)
        return AsyncHandle(shell_id=shell_id, stdout=stdout, stderr=stderr)

    def _sync_result(self, state: ProcessState) -> SyncResult:
        stdout, stderr = state.drain()
        code = state.exit_code if state.exit_code is not None else 1
        if code == 0:
            return SyncResult(stdout=stdout, stderr=stderr, exit_code=0)
        error = _describe_exit(code)
        return SyncResult(stdout=stdout, stderr=stderr, exit_code=code if code > 0 else 1, error=error)

    async def _pump(self, stream: asyncio.StreamReader, sink: List[str], label: str, shell_id: str,
                    echo: bool):
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            sink.append(text)
            if echo:
                for line in text.rstrip("\n").splitlines():
                    self.log.info("[%s] %s %s", shell_id[:8], label, line)

    async def _watch(self, shell_id: str, state: ProcessState):
        """Collect output until exit, then record the outcome in the registry."""
        proc = state.process
        pumps = [
            asyncio.ensure_future(self._pump(proc.stdout, state.stdout, "stdout:", shell_id, state.show_stdout)),
            asyncio.ensure_future(self._pump(proc.stderr, state.stderr, "stderr:", shell_id, state.show_stdout)),
        ]
        try:
            code = await proc.wait()
        except Exception as e:
            state.completed = True
            state.exit_code = 1
            self.registry.update_status(shell_id, TaskStatus.ERROR, {"error": str(e)})
            for pump in pumps:
                pump.cancel()
            return
        finally:
            if state.exited is not None and not state.exited.done():
                state.exited.set_result(None)

        # A backgrounded grandchild can hold the pipes open; take what is there.
        _, pending = await asyncio.wait(pumps, timeout=OUTPUT_SETTLE_TIMEOUT)
        for pump in pending:
            pump.cancel()

        state.completed = True
        state.exit_code = code
        if code < 0:
            state.signaled = True
            try:
                state.exit_signal = signal.Signals(-code).name
            except ValueError:
                state.exit_signal = str(-code)

        metadata = {"exitCode": code, "signaled": state.signaled}
        if code == 0:
            status = TaskStatus.COMPLETED
        elif state.signaled:
            status = TaskStatus.TERMINATED
        else:
            status = TaskStatus.ERROR
        self.registry.update_status(shell_id, status, metadata)
        self.log.debug("[%s] exited with code %s", shell_id[:8], code)

    # =========================================================================
    # Interaction
    # =========================================================================

    async def send_stdin(self, shell_id: str, text: str):
        """Write a line to the process's stdin and give it a moment to react."""
        state = self._require(shell_id)
        proc = state.process
        if state.completed or proc is None or proc.stdin is None or proc.stdin.is_closing():
            raise ProcessError("Process stdin is not available")

        if state.show_stdin:
            self.log.info("[%s] stdin: %s", shell_id[:8], text)
        proc.stdin.write((text + "\n").encode("utf-8"))
        try:
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessError(f"Failed to write to stdin: {e}") from e
        await asyncio.sleep(STDIN_SETTLE_DELAY)

    def send_signal(self, shell_id: str, signal_name: str) -> Dict[str, Any]:
        """
        Send a named signal to the process group.

        An unknown signal name is rejected without touching the process or
        its task. Otherwise the process is marked signaled even when delivery
        fails. Delivery to a process that is already gone moves the task to
        ERROR; SIGTERM, SIGKILL and SIGINT move it to TERMINATED; any other
        signal leaves it RUNNING.
        """
        state = self._require(shell_id)
        try:
            sig = parse_signal(signal_name)
        except ValueError as e:
            return {"success": False, "error": str(e)}

        state.signaled = True
        try:
            _signal_process(state, sig)
        except ProcessLookupError as e:
            self.registry.update_status(
                shell_id, TaskStatus.ERROR,
                {"error": f"Failed to send signal {signal_name}: {e}", "signalAttempted": signal_name},
            )
            self.log.warning("Failed to send signal %s to %s: %s", signal_name, shell_id[:8], e)
            return {"success": False, "error": str(e)}
        except (OSError, ProcessError) as e:
            self.log.warning("Failed to send signal %s to %s: %s", signal_name, shell_id[:8], e)
            return {"success": False, "error": str(e)}

        if sig.name in TERMINATING_SIGNALS:
            self.registry.update_status(
                shell_id, TaskStatus.TERMINATED,
                {"signal": sig.name, "terminatedByUser": True},
            )
        else:
            self.registry.update_status(
                shell_id, TaskStatus.RUNNING, {"signal": sig.name, "signaled": True}
            )
        return {"success": True}

    async def read_output(self, shell_id: str) -> Dict[str, Any]:
        """Drain everything buffered since the last read."""
        state = self._require(shell_id)
        await asyncio.sleep(READ_SETTLE_DELAY)
        stdout, stderr = state.drain()
        return {
            "stdout": stdout.strip(),
            "stderr": stderr.strip(),
            "completed": state.completed,
            "signaled": state.signaled,
            "exitCode": state.exit_code,
        }
