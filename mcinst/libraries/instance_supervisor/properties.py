import logging
import os
import aiofiles
from .errors import ValidationError

__all__ = ["ServerPropertiesWriter"]

logger = logging.getLogger(__name__)


class ServerPropertiesWriter:
    """Merges enforced keys into an instance's server.properties, keeping every other line"""

    properties: dict = {
        "server-port": {"type": "int"},
        "online-mode": {"type": "bool"},
    }

    def __init__(self, instance_dir: str) -> None:
        self._properties_file: str = os.path.join(instance_dir, "server.properties")

    async def apply(self, properties: dict) -> None:
        self.validate_properties(properties)

        lines = []

        if os.path.exists(self._properties_file):
            async with aiofiles.open(self._properties_file, "r", encoding="utf-8") as f:
                lines = (await f.read()).splitlines()

        pending = dict(properties)
        merged = []

        for line in lines:
            key = line.split("=", 1)[0].strip() if "=" in line and not line.lstrip().startswith("#") else None

            if key in pending:
                merged.append(f"{key}={pending.pop(key)}")
            else:
                merged.append(line)

        merged.extend(f"{key}={value}" for key, value in pending.items())

        async with aiofiles.open(self._properties_file, "w", encoding="utf-8") as f:
            await f.write("\n".join(merged) + "\n")

        logger.debug(f"Applied {', '.join(properties)} to {self._properties_file}")

    @classmethod
    def validate_properties(cls, properties: dict) -> None:
        for key, value in properties.items():
            if key not in cls.properties:
                raise ValidationError(key, f"Unknown property: {key}")

            prop_type = cls.properties[key].get("type", "str")

            if prop_type == "int" and not value.isdigit():
                raise ValidationError(key, f"Property '{key}' must be an integer")

            if prop_type == "bool" and value not in ["true", "false"]:
                raise ValidationError(key, f"Property '{key}' must be a boolean")
