import os
import shutil
from typing import Iterable, Type, TypeVar
from pydantic import BaseModel, ValidationError as PydanticValidationError
from mcinst.schemas.instances import InstanceConfigSchema, ServerInstance
from .errors import ValidationError, PortInUse

__all__ = ["ConfigValidator"]

ConfigT = TypeVar("ConfigT", bound=BaseModel)


class ConfigValidator:
    """Instance configuration validator.

    Stateless: every check is a function of its arguments (and, for paths,
    of the filesystem at the time of the call).
    """

    def validate(self, schema: Type[ConfigT], data: dict) -> ConfigT:
        """Validate a request against its schema and the cross-field rules"""
        try:
            config = schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(*self._first_error(e, schema)) from e

        if isinstance(config, InstanceConfigSchema):
            self.check_memory(config.min_memory, config.max_memory)

        return config

    def check_memory(self, min_memory: int, max_memory: int) -> None:
        if min_memory < 1:
            raise ValidationError("min_memory", "Min memory must be at least 1 MB")

        if max_memory < min_memory:
            raise ValidationError("max_memory", f"Max memory ({max_memory} MB) must not be lower than min memory ({min_memory} MB)")

    def check_port(self, port: int) -> None:
        if not 1 <= port <= 65535:
            raise ValidationError("port", f"Port {port} is outside of range 1-65535")

    def check_java(self, java_path: str) -> str:
        """Ensure the java runtime can be invoked and return its resolved path"""
        if not java_path:
            raise ValidationError("java_path", "Java path is required")

        resolved = shutil.which(java_path)

        if not resolved:
            raise ValidationError("java_path", f"Java runtime {java_path} is not an executable")

        return resolved

    def check_path(self, field: str, path: str, *, kind: str = "file") -> str:
        """Ensure a path exists (as a file or directory) and return it absolute"""
        if not path:
            raise ValidationError(field, "Path is required")

        path = os.path.abspath(os.path.expanduser(path))

        if kind == "file" and not os.path.isfile(path):
            raise ValidationError(field, f"File {path} does not exist")
        elif kind == "dir" and not os.path.isdir(path):
            raise ValidationError(field, f"Directory {path} does not exist")

        return path

    def check_unique(
        self,
        records: Iterable[ServerInstance],
        *,
        name: str | None = None,
        port: int | None = None,
        exclude_id: str | None = None,
    ) -> None:
        """Ensure name and port are not claimed by another instance"""
        if name is not None and not name.strip():
            raise ValidationError("name", "Name must not be empty")

        if port is not None:
            self.check_port(port)

        for record in records:
            if record.id == exclude_id:
                continue

            if name is not None and record.name == name.strip():
                raise ValidationError("name", f"An instance named {record.name} already exists")

            if port is not None and record.port == port:
                raise PortInUse(port, owner=record.name)

    def _first_error(self, e: PydanticValidationError, schema: Type[BaseModel]) -> tuple[str, str]:
        err = e.errors(include_url=False)[0]
        field_id = str(err["loc"][0]) if err["loc"] else "general"
        field = schema.model_fields.get(field_id)
        title = field.title if field and field.title else field_id

        return field_id, f"{title}: {err['msg']}"
