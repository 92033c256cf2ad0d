import asyncio
import logging
import sys
from mcinst.libraries.di_container import DiContainer
from mcinst.libraries.instance_supervisor import InstanceSupervisorError, NotRunning, ValidationError
from mcinst.services.supervisor import Supervisor

__all__ = ["McInstCli"]
logger = logging.getLogger(__name__)


class McInstCli:
    def __init__(self, command: str, *, di: DiContainer) -> None:
        self._di = di
        self._handlers = {
            "list": self.list_instances,
            "create": self.create_instance,
            "import-server": self.import_server,
            "import-modpack": self.import_modpack,
            "add-existing": self.add_existing_server,
            "rename": self.rename_instance,
            "delete": self.delete_instance,
            "run": self.run_instance,
        }

        handler = self._handlers.get(command)

        if not handler:
            raise ValueError(f"Unknown command: {command}")

        self._command = command
        self._handler = handler

    async def run(self, **kwargs) -> int:
        try:
            return await self._handler(**kwargs)
        except InstanceSupervisorError as e:
            logger.error(f"Command {self._command} failed: {e}")
            return 1

    async def list_instances(self) -> int:
        supervisor: Supervisor = self._di.supervisor

        instances = supervisor.list()

        if not instances:
            logger.info("No instances registered")
            return 0

        instances_str = ""

        for inst in instances:
            instances_str += (
                f"{inst['id']}  {inst['name']}  {inst['core_type']} {inst['mc_version']}  "
                f"port={inst['port']}  mode={inst['startup_mode']}  status={inst['status']}\n"
            )

        logger.info(f"Instances:\n\n{instances_str}")

        return 0

    async def create_instance(self, **kwargs) -> int:
        supervisor: Supervisor = self._di.supervisor

        instance = await supervisor.create(**kwargs)

        logger.info(f"Instance created successfully: {instance.name} ({instance.id})")

        return 0

    async def import_server(self, **kwargs) -> int:
        supervisor: Supervisor = self._di.supervisor

        instance = await supervisor.import_server(**kwargs)

        logger.info(f"Server imported successfully: {instance.name} ({instance.id})")

        return 0

    async def import_modpack(self, **kwargs) -> int:
        supervisor: Supervisor = self._di.supervisor

        instance = await supervisor.import_modpack(**kwargs)

        logger.info(f"Modpack imported successfully: {instance.name} ({instance.id}), entry {instance.jar_path}")

        return 0

    async def add_existing_server(self, **kwargs) -> int:
        supervisor: Supervisor = self._di.supervisor

        instance = await supervisor.add_existing_server(**kwargs)

        logger.info(f"Existing server added successfully: {instance.name} ({instance.id}), entry {instance.jar_path}")

        return 0

    async def rename_instance(self, *, id: str, name: str) -> int:
        supervisor: Supervisor = self._di.supervisor

        instance = await supervisor.rename(id, name)

        logger.info(f"Instance {id} renamed to {instance.name}")

        return 0

    async def delete_instance(self, *, id: str) -> int:
        supervisor: Supervisor = self._di.supervisor

        logger.info(f"Deleting instance: {id}")

        await supervisor.delete(id)

        logger.info(f"Instance deleted successfully: {id}")

        return 0

    async def run_instance(self, *, id: str, interactive: bool = False, poll_interval: float = 0.2) -> int:
        """Run an instance in the foreground, streaming its output until it exits"""
        supervisor: Supervisor = self._di.supervisor

        await supervisor.start(id)

        forwarder = asyncio.create_task(self._forward_stdin(id), name="stdin_forwarder") if interactive else None
        since = 0

        try:
            while True:
                status = supervisor.get_status(id)["status"]

                for record in supervisor.get_log_records(id, since):
                    stream = sys.stderr if record.stream == "stderr" else sys.stdout
                    stream.write(record.line + "\n")
                    stream.flush()
                    since = record.seq

                # output is fully drained before the status settles
                if status in ("Stopped", "Error"):
                    break

                await asyncio.sleep(poll_interval)
        finally:
            if forwarder:
                forwarder.cancel()
                await asyncio.gather(forwarder, return_exceptions=True)

        if status == "Error":
            logger.error(f"Instance {id} exited with an error")
            return 1

        logger.info(f"Instance {id} stopped")

        return 0

    async def _forward_stdin(self, instance_id: str) -> None:
        supervisor: Supervisor = self._di.supervisor
        loop = asyncio.get_running_loop()

        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

        while line := await reader.readline():
            command = line.decode("utf-8", errors="replace").strip()

            if not command:
                continue

            try:
                await supervisor.send_command(instance_id, command)
            except (NotRunning, ValidationError) as e:
                logger.warning(f"Command not sent: {e}")
