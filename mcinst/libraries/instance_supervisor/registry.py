import asyncio
import contextlib
import json
import logging
import os
import time
import aiofiles
from pydantic import ValidationError as PydanticValidationError
from mcinst.schemas.instances import ServerInstance
from mcinst.utils.random import random_id
from .errors import CatalogError, NotFound, ValidationError
from .validator import ConfigValidator

__all__ = ["InstanceRegistry"]

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """Authoritative catalog of server instances, persisted as a single JSON file.

    Every mutation runs in one critical section: uniqueness checks, the write of
    the new catalog and the swap of the in-memory copy. The in-memory catalog is
    only replaced once the new file is durably on disk.
    """

    catalog_version: int = 1
    immutable_fields: tuple[str, ...] = ("id", "created_at")

    def __init__(self, catalog_file: str, *, validator: ConfigValidator) -> None:
        self._catalog_file: str = catalog_file
        self._validator: ConfigValidator = validator

        self._instances: dict[str, ServerInstance] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def load(self) -> None:
        """Load the catalog from disk, replacing the in-memory copy"""
        async with self._lock:
            self._instances = await self._read_catalog()

        logger.info(f"Loaded {len(self._instances)} instance(s) from {self._catalog_file}")

    async def create(self, config: dict, *, instance_id: str | None = None) -> str:
        """Register a new instance and return its identifier.

        The identifier is generated unless one was reserved up front (a modpack
        extraction directory is named after its instance).
        """
        async with self._lock:
            self._validator.check_unique(self._instances.values(), name=config.get("name"), port=config.get("port"))

            if instance_id is None:
                instance_id = random_id()

                while instance_id in self._instances:
                    instance_id = random_id()
            elif instance_id in self._instances:
                raise ValidationError("id", f"Identifier {instance_id} is already taken")

            data = {
                **{k: v for k, v in config.items() if k not in self.immutable_fields},
                "id": instance_id,
                "created_at": int(time.time()),
            }

            try:
                instance = ServerInstance.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(str(e.errors()[0]["loc"][0]), e.errors()[0]["msg"]) from e

            await self._commit({**self._instances, instance_id: instance})

        logger.info(f"Instance {instance.name} registered with id {instance_id}")

        return instance_id

    def get(self, instance_id: str) -> ServerInstance:
        instance = self._instances.get(instance_id)

        if not instance:
            raise NotFound(instance_id)

        return instance

    def list(self) -> list[ServerInstance]:
        return sorted(self._instances.values(), key=lambda i: (i.created_at, i.name))

    async def update(self, instance_id: str, patch: dict) -> ServerInstance:
        """Apply a partial update to an instance"""
        async with self._lock:
            instance = self.get(instance_id)

            for field in self.immutable_fields:
                if field in patch and patch[field] != getattr(instance, field):
                    raise ValidationError(field, f"Field {field} cannot be changed")

            self._validator.check_unique(
                self._instances.values(),
                name=patch.get("name"),
                port=patch.get("port"),
                exclude_id=instance_id,
            )

            try:
                updated = ServerInstance.model_validate({**instance.model_dump(), **patch})
            except PydanticValidationError as e:
                raise ValidationError(str(e.errors()[0]["loc"][0]), e.errors()[0]["msg"]) from e

            await self._commit({**self._instances, instance_id: updated})

        return updated

    async def remove(self, instance_id: str) -> None:
        async with self._lock:
            self.get(instance_id)

            await self._commit({k: v for k, v in self._instances.items() if k != instance_id})

        logger.info(f"Instance {instance_id} removed from catalog")

    async def _commit(self, instances: dict[str, ServerInstance]) -> None:
        await self._write_catalog(instances)
        self._instances = instances

    async def _read_catalog(self) -> dict[str, ServerInstance]:
        if not os.path.exists(self._catalog_file):
            return {}

        try:
            async with aiofiles.open(self._catalog_file, "r", encoding="utf-8") as f:
                content = json.loads(await f.read())

            return {k: ServerInstance.model_validate(v) for k, v in content.get("instances", {}).items()}
        except (OSError, json.JSONDecodeError, AttributeError, PydanticValidationError) as e:
            raise CatalogError(f"Failed to load instance catalog {self._catalog_file}: {e}") from e

    async def _write_catalog(self, instances: dict[str, ServerInstance]) -> None:
        tmp = self._catalog_file + ".tmp"
        content = {
            "version": self.catalog_version,
            "instances": {k: v.model_dump() for k, v in instances.items()},
        }

        try:
            directory = os.path.dirname(self._catalog_file)

            if directory and not os.path.exists(directory):
                os.makedirs(directory)

            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(json.dumps(content, indent=2))
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())

            os.replace(tmp, self._catalog_file)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.remove(tmp)

            raise CatalogError(f"Failed to persist instance catalog: {e}") from e
