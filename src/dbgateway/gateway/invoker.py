"""Runs gateway scripts as child processes.

Each request gets exactly one child process, started directly with its
argument list (never through a shell string), in its own process group.
The child is bounded by a wall-clock deadline and by the caller's
disconnect signal; when either fires, the whole process group is killed
and reaped before control returns to the handler.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

BASH = "/bin/bash"

# How often the caller's disconnect signal is polled (seconds)
DEFAULT_POLL_INTERVAL = 0.5
# How long to wait for pipes to drain after killing a process group
KILL_GRACE = 2.0

DisconnectCheck = Callable[[], Awaitable[bool]]


class InvocationDescriptor(BaseModel):
    """Fully resolved description of a single process launch."""

    model_config = ConfigDict(frozen=True)

    program: str = Field(description="Absolute path of the executable")
    args: tuple[str, ...] = Field(default=(), description="Positional arguments")
    cwd: str = Field(description="Working directory of the child")
    timeout: float | None = Field(default=None, gt=0, description="Deadline in seconds")
    merge_stderr: bool = Field(
        default=True, description="Capture stderr into the same stream as stdout"
    )

    @property
    def command(self) -> list[str]:
        return [self.program, *self.args]


class ScriptError(Exception):
    """Raised when a script cannot produce a result.

    ``output`` holds whatever the child wrote before failing. It is meant
    for server-side logs only.
    """

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        output: bytes = b"",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = list(command)
        self.output = output
        self.returncode = returncode


class ScriptSpawnError(ScriptError):
    """The executable could not be started."""


class ScriptExitError(ScriptError):
    """The script exited with a non-zero status or died from a signal."""


class ScriptTimeoutError(ScriptError):
    """The script did not finish before its deadline and was killed."""


class ScriptCancelledError(ScriptError):
    """The caller went away while the script was running; it was killed."""


class ProcessInvoker:
    """Builds and runs invocation descriptors relative to a working directory.

    Usage::

        invoker = ProcessInvoker("/srv/gateway")
        descriptor = invoker.describe("query.sh", ["mydb", "aGVsbG8="], timeout=30)
        output = await invoker.invoke(descriptor)
    """

    def __init__(
        self,
        working_dir: Path | str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._working_dir = Path(working_dir).absolute() if working_dir else Path.cwd()
        self._poll_interval = poll_interval

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    def script_path(self, script_name: str) -> Path:
        return self._working_dir / script_name

    def describe(
        self,
        script_name: str,
        args: Sequence[str],
        timeout: float | None,
    ) -> InvocationDescriptor:
        """Descriptor for running a script directly with positional arguments.

        Output is stdout and stderr combined.
        """
        return InvocationDescriptor(
            program=str(self.script_path(script_name)),
            args=tuple(args),
            cwd=str(self._working_dir),
            timeout=timeout,
        )

    def describe_shell(self, script_name: str) -> InvocationDescriptor:
        """Descriptor for running ``bash ./<script>`` with no arguments.

        Only stdout is captured as output; stderr is kept for the logs.
        """
        return InvocationDescriptor(
            program=BASH,
            args=(f"./{script_name}",),
            cwd=str(self._working_dir),
            merge_stderr=False,
        )

    async def invoke(
        self,
        descriptor: InvocationDescriptor,
        is_disconnected: DisconnectCheck | None = None,
    ) -> bytes:
        """Run the described process and return its captured output.

        Args:
            descriptor: What to run.
            is_disconnected: Optional coroutine function polled while the
                process runs; once it returns True the process is killed.

        Raises:
            ScriptSpawnError: The process could not be started.
            ScriptExitError: The process exited non-zero.
            ScriptTimeoutError: The deadline elapsed.
            ScriptCancelledError: ``is_disconnected`` reported a disconnect.
        """
        command = descriptor.command
        logger.debug("Starting %s (timeout=%s)", command, descriptor.timeout)
        try:
            process = await asyncio.create_subprocess_exec(
                descriptor.program,
                *descriptor.args,
                cwd=descriptor.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=(
                    asyncio.subprocess.STDOUT
                    if descriptor.merge_stderr
                    else asyncio.subprocess.PIPE
                ),
                start_new_session=True,
            )
        except OSError as e:
            raise ScriptSpawnError(f"Cannot start {descriptor.program}: {e}", command) from e

        communicate = asyncio.ensure_future(process.communicate())
        watcher = None
        if is_disconnected is not None:
            watcher = asyncio.ensure_future(self._watch_disconnect(is_disconnected))

        pending = {communicate} if watcher is None else {communicate, watcher}
        try:
            done, _ = await asyncio.wait(
                pending,
                timeout=descriptor.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._kill(process, communicate)
            raise
        finally:
            if watcher is not None and not watcher.done():
                watcher.cancel()

        if communicate not in done:
            output = await self._kill(process, communicate)
            if watcher is not None and watcher in done:
                logger.warning("Client disconnected, killed %s (pid=%d)", command, process.pid)
                raise ScriptCancelledError(
                    "Client disconnected", command, output
                ) from watcher.exception()
            logger.warning(
                "Deadline of %ss elapsed, killed %s (pid=%d)",
                descriptor.timeout, command, process.pid,
            )
            raise ScriptTimeoutError(
                f"Timed out after {descriptor.timeout}s", command, output
            )

        stdout, stderr = communicate.result()
        returncode = process.returncode
        if returncode != 0:
            raise ScriptExitError(
                _describe_exit(returncode), command, stdout + (stderr or b""), returncode
            )
        logger.debug("%s finished with %d bytes of output", command, len(stdout))
        return stdout

    async def _watch_disconnect(self, is_disconnected: DisconnectCheck) -> None:
        while not await is_disconnected():
            await asyncio.sleep(self._poll_interval)

    async def _kill(
        self,
        process: asyncio.subprocess.Process,
        communicate: asyncio.Future[tuple[bytes, bytes]],
    ) -> bytes:
        """Kill the process group and return the output collected so far."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        try:
            stdout, stderr = await asyncio.wait_for(communicate, KILL_GRACE)
        except asyncio.TimeoutError:
            logger.warning("Output pipes of pid %d stayed open after kill", process.pid)
            await process.wait()
            return b""
        return stdout + (stderr or b"")


def _describe_exit(returncode: int | None) -> str:
    if returncode is not None and returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"
