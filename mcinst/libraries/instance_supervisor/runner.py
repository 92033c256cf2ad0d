import asyncio
import contextlib
import enum
import logging
import os
import shlex
import shutil
import signal
import socket
from datetime import datetime, timezone
from typing import Awaitable, Callable, NamedTuple
from mcinst.schemas.instances import ServerInstance
from .log_buffer import LogBuffer
from .errors import InvalidTransition, NotRunning, SpawnFailure

__all__ = [
    "ServerStatus",
    "RuntimeStatus",
    "ProcessController",
]

logger = logging.getLogger(__name__)


class ServerStatus(str, enum.Enum):
    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    ERROR = "Error"


class RuntimeStatus(NamedTuple):
    """Runtime state of one instance. Build it through the constructors below only."""

    status: ServerStatus
    pid: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    exit_code: int | None = None
    reason: str = ""

    @classmethod
    def stopped(cls, *, exit_code: int | None = None) -> "RuntimeStatus":
        return cls(ServerStatus.STOPPED, exit_code=exit_code)

    @classmethod
    def starting(cls, pid: int) -> "RuntimeStatus":
        return cls(ServerStatus.STARTING, pid=pid, started_at=datetime.now(timezone.utc))

    @classmethod
    def error(cls, reason: str, *, previous: "RuntimeStatus | None" = None, exit_code: int | None = None) -> "RuntimeStatus":
        # keep the last pid and start time around for diagnostics
        pid = previous.pid if previous else None
        started_at = previous.started_at if previous else None

        return cls(
            ServerStatus.ERROR,
            pid=pid,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc) if started_at else None,
            exit_code=exit_code,
            reason=reason,
        )

    def running(self) -> "RuntimeStatus":
        if self.status != ServerStatus.STARTING:
            raise InvalidTransition(f"Cannot go from {self.status.value} to {ServerStatus.RUNNING.value}")

        return self._replace(status=ServerStatus.RUNNING)

    def stopping(self) -> "RuntimeStatus":
        if not self.is_active:
            raise InvalidTransition(f"Cannot go from {self.status.value} to {ServerStatus.STOPPING.value}")

        return self._replace(status=ServerStatus.STOPPING)

    @property
    def is_active(self) -> bool:
        return self.status in (ServerStatus.STARTING, ServerStatus.RUNNING, ServerStatus.STOPPING)

    @property
    def uptime(self) -> int | None:
        if self.started_at is None:
            return None

        end = self.ended_at or datetime.now(timezone.utc)

        return max(int((end - self.started_at).total_seconds()), 0)


class ProcessController:
    """Owns the OS process of exactly one server instance.

    Lifecycle operations (start, stop, send_command) are serialized through a
    per instance lock. A stop issued while a start is in progress waits for the
    start to settle. Output is drained by one reader task per stream, and a
    watcher task settles the status once the process exits.
    """

    stream_limit: int = 1024 * 1024

    def __init__(self, instance_id: str, log_buffer: LogBuffer, settings: dict) -> None:
        self._instance_id: str = instance_id
        self._log_buffer: LogBuffer = log_buffer
        self._settings: dict = settings

        self._lock: asyncio.Lock = asyncio.Lock()
        self._status: RuntimeStatus = RuntimeStatus.stopped()
        self._proc: asyncio.subprocess.Process | None = None
        self._proc_wait_task: asyncio.Task | None = None
        self._proc_reader_tasks: list[asyncio.Task] = []
        self._closed: bool = False

    @property
    def status(self) -> RuntimeStatus:
        return self._status

    def get_status_info(self) -> dict:
        return {
            "id": self._instance_id,
            "status": self._status.status.value,
            "pid": self._status.pid,
            "uptime": self._status.uptime,
        }

    async def start(self, instance: ServerInstance, *, prepare: Callable[[ServerInstance], Awaitable[None]] | None = None) -> None:
        """Spawn the instance process. Returns once the process is confirmed alive.

        `prepare` runs under the instance lock right before the spawn; a SpawnFailure
        raised from it leaves the instance in Error like any other launch failure.
        """
        async with self._lock:
            if self._closed:
                raise InvalidTransition(f"Instance {self._instance_id} is being deleted")

            if self._status.is_active:
                raise InvalidTransition(f"Instance {self._instance_id} is already {self._status.status.value}")

            try:
                if prepare:
                    await prepare(instance)

                (cmd, env) = self._prepare_launch(instance)
            except SpawnFailure as e:
                logger.error(f"Cannot start instance {self._instance_id}: {e}")
                self._status = RuntimeStatus.error(str(e))
                raise

            logger.info(f"Starting instance {self._instance_id} ({instance.startup_mode}): {shlex.join(cmd)}")

            try:
                self._proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=instance.path,
                    env=env,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=self.stream_limit,
                    start_new_session=self._new_session,  # own process group
                )
            except OSError as e:
                logger.error(f"Failed to spawn instance {self._instance_id}: {e}")
                self._status = RuntimeStatus.error(f"Failed to spawn process: {e}")
                raise SpawnFailure(f"Failed to spawn instance {self._instance_id}", e) from e

            self._status = RuntimeStatus.starting(self._proc.pid)

            self._proc_reader_tasks = [
                asyncio.create_task(self._proc_output_reader(self._proc.stdout, "stdout"), name=f"inst_{self._instance_id}_stdout"),
                asyncio.create_task(self._proc_output_reader(self._proc.stderr, "stderr"), name=f"inst_{self._instance_id}_stderr"),
            ]
            self._proc_wait_task = asyncio.create_task(self._proc_exit_watcher(self._proc), name=f"inst_{self._instance_id}_wait")

            # give the event loop a chance to notice an immediate exit
            await asyncio.sleep(0)

            if self._status.status == ServerStatus.STARTING and self._proc and self._proc.returncode is None:
                self._status = self._status.running()
                logger.info(f"Instance {self._instance_id} started with PID {self._status.pid}")

    async def stop(self) -> None:
        """Stop the process gracefully, escalating to termination. No-op when not active."""
        async with self._lock:
            await self._stop()

    async def close(self) -> None:
        """Stop the process and refuse any further start"""
        async with self._lock:
            self._closed = True
            await self._stop()

    def reopen(self) -> None:
        self._closed = False

    async def send_command(self, command: str) -> None:
        """Write a command line to the process standard input"""
        async with self._lock:
            if self._status.status != ServerStatus.RUNNING or not self._proc:
                raise NotRunning(self._instance_id)

            try:
                await self._write_line(self._proc, command)
            except (BrokenPipeError, ConnectionResetError) as e:
                raise NotRunning(self._instance_id) from e

            logger.debug(f"Command sent to instance {self._instance_id}: {command}")

    async def wait(self) -> None:
        """Wait for the current process (if any) to exit and its status to settle"""
        if self._proc_wait_task:
            await asyncio.wait({self._proc_wait_task})

    async def _stop(self) -> None:
        proc = self._proc
        wait_task = self._proc_wait_task

        if not self._status.is_active or not proc or not wait_task or wait_task.done():
            return

        self._status = self._status.stopping()

        stop_grace = self._settings.get("stop_grace_period", 30)
        kill_grace = self._settings.get("kill_grace_period", 5)

        # prefer graceful shutdown
        logger.info(f"Sending stop command to instance {self._instance_id}...")

        try:
            await self._write_line(proc, self._settings.get("stop_command", "stop"))
        except (BrokenPipeError, ConnectionResetError):
            logger.warning(f"Standard input of instance {self._instance_id} is closed")

        (done, _) = await asyncio.wait({wait_task}, timeout=stop_grace)

        if not done:
            logger.warning(f"Graceful stop of instance {self._instance_id} timed out; terminating...")
            self._send_signal(proc, signal.SIGTERM)

            (done, _) = await asyncio.wait({wait_task}, timeout=kill_grace)

        if not done:
            logger.warning(f"Instance {self._instance_id} ignored termination; killing...")
            self._send_signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

            await asyncio.wait({wait_task})

        logger.info(f"Instance {self._instance_id} stopped with exit code {proc.returncode}")

    async def _proc_exit_watcher(self, proc: asyncio.subprocess.Process) -> None:
        rc = await proc.wait()

        await self._finish_reader_tasks()

        if self._proc is proc:
            self._proc = None

        if self._status.status == ServerStatus.STOPPING:
            self._status = RuntimeStatus.stopped(exit_code=rc)
        elif rc == 0:
            logger.warning(f"Instance {self._instance_id} exited on its own")
            self._status = RuntimeStatus.stopped(exit_code=rc)
        else:
            logger.error(f"Instance {self._instance_id} exited unexpectedly (code={rc})")
            self._status = RuntimeStatus.error(f"Process exited unexpectedly (code={rc})", previous=self._status, exit_code=rc)

    async def _proc_output_reader(self, stream: asyncio.StreamReader, origin: str) -> None:
        encoding = self._settings.get("output_encoding", "utf-8")

        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning(f"Dropped an overlong {origin} line from instance {self._instance_id}")
                continue

            if not line:
                break

            text = line.decode(encoding, errors="replace").rstrip("\r\n")

            logger.debug(f"[{self._instance_id}] {text}")

            self._log_buffer.append(text, origin)

    async def _finish_reader_tasks(self) -> None:
        tasks = [t for t in self._proc_reader_tasks if not t.done()]

        if tasks:
            # readers end on EOF, unless a detached child still holds the pipes
            (_, pending) = await asyncio.wait(tasks, timeout=2)

            for task in pending:
                task.cancel()

            await asyncio.gather(*tasks, return_exceptions=True)

        self._proc_reader_tasks = []

    async def _write_line(self, proc: asyncio.subprocess.Process, text: str) -> None:
        if not proc.stdin or proc.stdin.is_closing():
            raise BrokenPipeError("Standard input is closed")

        proc.stdin.write((text.rstrip("\r\n") + "\n").encode(self._settings.get("output_encoding", "utf-8")))
        await proc.stdin.drain()

    def _send_signal(self, proc: asyncio.subprocess.Process, sig: int) -> None:
        with contextlib.suppress(ProcessLookupError):
            if self._new_session:
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()

    def _prepare_launch(self, instance: ServerInstance) -> tuple[list[str], dict]:
        if not os.path.isdir(instance.path):
            raise SpawnFailure(f"Working directory {instance.path} does not exist")

        if not os.path.isfile(instance.jar_path):
            raise SpawnFailure(f"Entry {instance.jar_path} does not exist")

        jvm_args = [
            f"-Xms{instance.min_memory}M",
            f"-Xmx{instance.max_memory}M",
            *instance.jvm_args,
        ]

        env = {
            **os.environ,
            "MCINST_JVM_ARGS": shlex.join(jvm_args),
            "MCINST_SERVER_PORT": str(instance.port),
        }

        if instance.java_path:
            env["MCINST_JAVA_BIN"] = instance.java_path

        if instance.startup_mode == "jar":
            java_bin = shutil.which(instance.java_path) if instance.java_path else None

            if not java_bin:
                raise SpawnFailure(f"Java runtime {instance.java_path} is not an executable")

            cmd = [java_bin, *jvm_args, "-jar", instance.jar_path, "nogui"]
        elif instance.startup_mode == "bat" and os.name == "nt":
            cmd = ["cmd", "/c", instance.jar_path]
        else:
            # memory flags are advisory for scripts, exposed through the environment
            cmd = ["sh", instance.jar_path]

        self._check_port_free(instance.port)

        return cmd, env

    def _check_port_free(self, port: int) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            if os.name != "nt":
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

            try:
                s.bind(("0.0.0.0", port))
            except OSError as e:
                raise SpawnFailure(f"Port {port} is already bound by another process", e) from e

    @property
    def _new_session(self) -> bool:
        return os.name != "nt"
