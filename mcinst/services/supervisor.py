import asyncio
import logging
import time
from packaging import version
from mcinst.libraries.instance_supervisor import (
    ConfigValidator,
    ImportResolver,
    InstanceRegistry,
    LogBuffer,
    LogRecord,
    ProcessController,
    ServerPropertiesWriter,
    CatalogError,
    InvalidTransition,
    NotFound,
    NotRunning,
    SpawnFailure,
    ValidationError,
)
from mcinst.schemas.instances import (
    AddExistingServerSchema,
    CreateServerSchema,
    ImportModpackSchema,
    ImportServerSchema,
    InstanceConfigSchema,
    LaunchSchema,
    RenameServerSchema,
    ServerInstance,
)
from mcinst.utils.random import random_id

__all__ = ["Supervisor"]

logger = logging.getLogger(__name__)


class Supervisor:
    """Instance supervisor. Binds registry records to their runtime process controller and log buffer.

    Controllers and log buffers are runtime-only side tables keyed by instance id,
    created on first reference and discarded on delete. Nothing runtime related is
    persisted, so after a restart every instance reports Stopped.
    """

    def __init__(
        self,
        *,
        registry: InstanceRegistry,
        resolver: ImportResolver,
        validator: ConfigValidator,
        config: dict,
    ) -> None:
        self._registry: InstanceRegistry = registry
        self._resolver: ImportResolver = resolver
        self._validator: ConfigValidator = validator
        self._config: dict = config

        self._controllers: dict[str, ProcessController] = {}
        self._log_buffers: dict[str, LogBuffer] = {}
        self._deleting: set[str] = set()

    async def load(self) -> None:
        """(Re)load the catalog. Runtime state starts fresh."""
        if any(c.status.is_active for c in self._controllers.values()):
            raise InvalidTransition("Cannot reload the catalog while instances are active")

        await self._registry.load()

        self._controllers.clear()
        self._log_buffers.clear()

    async def create(self, **kwargs) -> ServerInstance:
        """Register a fresh instance around a supplied server jar"""
        request = self._validator.validate(CreateServerSchema, kwargs)
        self._check_unique(request)

        launch = await self._resolver.resolve_jar(request.jar_path, request.startup_mode)

        return await self._register(request, launch, core_type=request.core_type, mc_version=request.mc_version)

    async def import_server(self, **kwargs) -> ServerInstance:
        """Register an instance around an existing jar or launch script"""
        request = self._validator.validate(ImportServerSchema, kwargs)
        self._check_unique(request)

        launch = await self._resolver.resolve_jar(request.jar_path, request.startup_mode)

        return await self._register(request, launch, online_mode=request.online_mode)

    async def import_modpack(self, **kwargs) -> ServerInstance:
        """Extract a modpack and register an instance around its server entry"""
        request = self._validator.validate(ImportModpackSchema, kwargs)
        self._check_unique(request)

        instance_id = random_id()
        launch = await self._resolver.resolve_modpack(request.modpack_path, target=instance_id)

        try:
            return await self._register(request, launch, instance_id=instance_id)
        except Exception:
            await self._resolver.discard_modpack(instance_id)
            raise

    async def add_existing_server(self, **kwargs) -> ServerInstance:
        """Adopt an existing server installation"""
        request = self._validator.validate(AddExistingServerSchema, kwargs)
        self._check_unique(request)

        launch = await self._resolver.resolve_existing(request.server_path, request.startup_mode, request.executable_path)

        return await self._register(request, launch)

    async def start(self, instance_id: str) -> None:
        instance = self._registry.get(instance_id)

        if instance_id in self._deleting:
            raise InvalidTransition(f"Instance {instance_id} is being deleted")

        controller = self._get_controller(instance_id)

        await controller.start(instance, prepare=self._apply_properties)

        try:
            await self._registry.update(instance_id, {"last_started_at": int(time.time())})
        except (CatalogError, NotFound) as e:
            logger.error(f"Could not record start time of instance {instance_id}: {e}")

    async def stop(self, instance_id: str) -> None:
        self._registry.get(instance_id)

        controller = self._controllers.get(instance_id)

        if not controller:
            return

        await controller.stop()

    async def restart(self, instance_id: str) -> None:
        await self.stop(instance_id)
        await self.start(instance_id)

    async def send_command(self, instance_id: str, command: str) -> None:
        self._registry.get(instance_id)

        command = command.rstrip("\r\n")

        if not command.strip():
            raise ValidationError("command", "Command must not be empty")

        if "\n" in command or "\r" in command:
            raise ValidationError("command", "Command must be a single line")

        controller = self._controllers.get(instance_id)

        if not controller:
            raise NotRunning(instance_id)

        await controller.send_command(command)

    def get(self, instance_id: str) -> ServerInstance:
        return self._registry.get(instance_id)

    def get_status(self, instance_id: str) -> dict:
        self._registry.get(instance_id)

        return self._status_info(instance_id)

    async def delete(self, instance_id: str) -> None:
        """Stop the instance if needed, then drop it from the catalog. Server files are left in place."""
        self._registry.get(instance_id)

        if instance_id in self._deleting:
            raise InvalidTransition(f"Instance {instance_id} is already being deleted")

        self._deleting.add(instance_id)

        try:
            controller = self._controllers.get(instance_id)

            if controller:
                await controller.close()

            try:
                await self._registry.remove(instance_id)
            except Exception:
                if controller:
                    controller.reopen()
                raise

            self._controllers.pop(instance_id, None)
            self._log_buffers.pop(instance_id, None)
        finally:
            self._deleting.discard(instance_id)

        logger.info(f"Instance {instance_id} deleted")

    def get_logs(self, instance_id: str, since: int = 0) -> list[str]:
        return [record.line for record in self.get_log_records(instance_id, since)]

    def get_log_records(self, instance_id: str, since: int = 0, limit: int | None = None) -> list[LogRecord]:
        self._registry.get(instance_id)

        log_buffer = self._log_buffers.get(instance_id)

        if not log_buffer:
            return []

        return log_buffer.read(since, limit)

    async def rename(self, instance_id: str, name: str) -> ServerInstance:
        request = self._validator.validate(RenameServerSchema, {"name": name})

        if instance_id in self._deleting:
            raise InvalidTransition(f"Instance {instance_id} is being deleted")

        instance = await self._registry.update(instance_id, {"name": request.name})

        logger.info(f"Instance {instance_id} renamed to {instance.name}")

        return instance

    update_server_name = rename

    async def wait(self, instance_id: str) -> None:
        """Wait until the current process of an instance exits"""
        self._registry.get(instance_id)

        controller = self._controllers.get(instance_id)

        if controller:
            await controller.wait()

    async def shutdown(self) -> None:
        """Stop every active instance"""
        active = [(i, c) for i, c in self._controllers.items() if c.status.is_active]

        if not active:
            return

        logger.info(f"Stopping {len(active)} active instance(s)")

        results = await asyncio.gather(*(c.stop() for _, c in active), return_exceptions=True)

        for (instance_id, _), result in zip(active, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to stop instance {instance_id}: {result}")

    def _get_controller(self, instance_id: str) -> ProcessController:
        if instance_id not in self._controllers:
            self._log_buffers[instance_id] = LogBuffer(self._config.get("log_capacity", 5000))
            self._controllers[instance_id] = ProcessController(instance_id, self._log_buffers[instance_id], self._config)

        return self._controllers[instance_id]

    def _status_info(self, instance_id: str) -> dict:
        controller = self._controllers.get(instance_id)

        if not controller:
            return {"id": instance_id, "status": "Stopped", "pid": None, "uptime": None}

        return controller.get_status_info()

    def _check_unique(self, request: InstanceConfigSchema) -> None:
        # the registry checks again under its lock
        self._validator.check_unique(self._registry.list(), name=request.name, port=request.port)

    async def _register(self, request: InstanceConfigSchema, launch: LaunchSchema, *, instance_id: str | None = None, **overrides) -> ServerInstance:
        java_path = request.java_path or self._default_java_path(overrides.get("mc_version", launch.mc_version))

        self._validator.check_java(java_path)

        config = {
            "name": request.name,
            "core_type": launch.core_type,
            "core_version": launch.core_version,
            "mc_version": launch.mc_version,
            "path": launch.path,
            "jar_path": launch.jar_path,
            "startup_mode": launch.startup_mode,
            "java_path": java_path,
            "max_memory": request.max_memory,
            "min_memory": request.min_memory,
            "jvm_args": list(self._config.get("default_jvm_args") or []),
            "port": request.port,
            **overrides,
        }

        instance_id = await self._registry.create(config, instance_id=instance_id)

        return self._registry.get(instance_id)

    async def _apply_properties(self, instance: ServerInstance) -> None:
        properties = {"server-port": str(instance.port)}

        if instance.online_mode is not None:
            properties["online-mode"] = "true" if instance.online_mode else "false"

        try:
            await ServerPropertiesWriter(instance.path).apply(properties)
        except OSError as e:
            raise SpawnFailure(f"Failed to write server.properties for instance {instance.id}", e) from e

    def _default_java_path(self, mc_version: str) -> str:
        if self._config.get("java_bin", ""):
            return self._config["java_bin"]

        try:
            v = version.parse(mc_version)
        except version.InvalidVersion:
            return "java"

        if v >= version.parse("1.21"):
            return "java-21"
        elif v >= version.parse("1.17"):
            return "java-17"
        else:
            return "java-8"

    def list(self) -> list[dict]:
        """Registry records merged with their live status"""
        instances = []

        for instance in self._registry.list():
            status = self._status_info(instance.id)
            instances.append({**instance.model_dump(), "status": status["status"], "pid": status["pid"], "uptime": status["uptime"]})

        return instances
