import os
import sys
import logging
import signal
import yaml
import asyncio
from logging.handlers import TimedRotatingFileHandler
from mcinst.cli import McInstCli
from mcinst.libraries.cleanup_queue import CleanupQueue
from mcinst.libraries.di_container import DiContainer
from mcinst.libraries.instance_supervisor import InstanceSupervisorError
from mcinst.setup_di import setup_di
from mcinst.exceptions import McInstRuntimeError

__all__ = ["McInstManager"]
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
EXIT_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGQUIT, signal.SIGHUP)


class McInstManager:
    """Application shell: logging, configuration, dependency wiring and the event loop the CLI runs in"""

    config_search_path: tuple[str, ...] = (
        "/etc/mc-instance-supervisor/config.yml",
        "/etc/opt/mc-instance-supervisor/config.yml",
        "~/.config/mc-instance-supervisor/config.yml",
    )

    def __init__(
        self,
        *,
        log_file: str = "",
        log_level: str = "",
        config_file: str = "",
        data_directory: str = "",
    ) -> None:
        self._setup_logging(log_file, log_level)

        self._data_directory: str = data_directory or self._default_data_directory()
        self._cleanup: CleanupQueue = CleanupQueue()
        self._di: DiContainer = DiContainer()

        setup_di(self._di, config=self._read_config(config_file), data_directory=self._data_directory)

    def run(self, command: str, **kwargs) -> int:
        return self._run_main(self._async_run, command, **kwargs)

    def _read_config(self, config_file: str = "") -> dict:
        candidates = [config_file] if config_file else [os.path.expanduser(p) for p in self.config_search_path]
        found = next((c for c in candidates if os.path.isfile(c)), None)

        if not found:
            logger.debug("No config file found, using defaults")
            return {}

        try:
            with open(found, "r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise McInstRuntimeError(f"Failed to parse config file {found}: {e}")

    def _default_data_directory(self) -> str:
        if sys.prefix != getattr(sys, "base_prefix", sys.prefix):
            # running from a virtualenv
            return os.path.join(sys.prefix, "var")

        if os.getuid() == 0:
            return "/var/lib/mc-instance-supervisor/"

        return os.path.expanduser("~/.mc-instance-supervisor/")

    def _setup_logging(self, log_file: str, log_level: str) -> None:
        level = logging.getLevelName(log_level if log_level in LOG_LEVELS else "INFO")

        if log_file:
            log_dir = os.path.dirname(log_file)

            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=4)
        else:
            handler = logging.StreamHandler()

        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        root = logging.getLogger()
        root.setLevel(level)
        root.addHandler(handler)

    def _on_exit_signal(self, main_task: asyncio.Task, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name} signal")
        main_task.cancel()

    def _run_main(self, coro_func, *args, **kwargs) -> int:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        main_task = loop.create_task(coro_func(*args, **kwargs), name="main")

        for sig in EXIT_SIGNALS:
            loop.add_signal_handler(sig, self._on_exit_signal, main_task, sig)

        rc = 1

        try:
            rc = loop.run_until_complete(main_task)
        except asyncio.CancelledError:
            logger.info("Shutting down")
            rc = 0
        except (InstanceSupervisorError, McInstRuntimeError) as e:
            logger.error(e)
        except Exception as e:
            logger.exception(e)
        finally:
            for sig in EXIT_SIGNALS:
                loop.remove_signal_handler(sig)

            if self._cleanup.has_jobs:
                logger.info("Running cleanup jobs")
                loop.run_until_complete(self._cleanup.consume_all())

            try:
                self._drain_tasks(loop)
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                asyncio.set_event_loop(None)
                loop.close()

        return rc

    def _drain_tasks(self, loop: asyncio.AbstractEventLoop) -> None:
        pending = asyncio.all_tasks(loop)

        for task in pending:
            task.cancel()

        results = loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))

        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                loop.call_exception_handler({"message": f"Task {task.get_name()} failed during shutdown", "exception": result, "task": task})

    async def _async_run(self, command: str, **kwargs) -> int:
        if not os.path.isdir(self._data_directory):
            logger.info(f"Creating data directory at '{self._data_directory}'")
            os.makedirs(self._data_directory, exist_ok=True)

        supervisor = self._di.supervisor

        await supervisor.load()

        self._cleanup.push("supervisor_shutdown", supervisor.shutdown)

        return await McInstCli(command, di=self._di).run(**kwargs)
