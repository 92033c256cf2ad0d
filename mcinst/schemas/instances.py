from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StartupMode",
    "InstanceConfigSchema",
    "CreateServerSchema",
    "ImportServerSchema",
    "ImportModpackSchema",
    "AddExistingServerSchema",
    "RenameServerSchema",
    "LaunchSchema",
    "ServerInstance",
]

StartupMode = Literal["jar", "bat", "sh"]


class InstanceConfigSchema(BaseModel):
    """Resource configuration shared by every way of registering an instance"""

    name: str = Field(min_length=1, max_length=100, title="Name")
    max_memory: int = Field(ge=1, title="Max memory (MB)")
    min_memory: int = Field(ge=1, title="Min memory (MB)")
    port: int = Field(ge=1, le=65535, title="Port")
    java_path: str = Field(default="", title="Java path")

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class CreateServerSchema(InstanceConfigSchema):
    core_type: str = Field(min_length=1, title="Core type")
    mc_version: str = Field(min_length=1, title="Game version")
    jar_path: str = Field(min_length=1, title="Jar path")
    startup_mode: StartupMode = "jar"


class ImportServerSchema(InstanceConfigSchema):
    jar_path: str = Field(min_length=1, title="Jar path")
    startup_mode: StartupMode
    online_mode: bool


class ImportModpackSchema(InstanceConfigSchema):
    modpack_path: str = Field(min_length=1, title="Modpack path")


class AddExistingServerSchema(InstanceConfigSchema):
    server_path: str = Field(min_length=1, title="Server path")
    startup_mode: StartupMode
    executable_path: Optional[str] = None


class RenameServerSchema(BaseModel):
    name: str = Field(min_length=1, max_length=100, title="Name")

    model_config = ConfigDict(str_strip_whitespace=True)


class LaunchSchema(BaseModel):
    """Normalized launch configuration produced by the import resolver"""

    path: str
    jar_path: str
    startup_mode: StartupMode
    core_type: str = "unknown"
    core_version: str = ""
    mc_version: str = "unknown"


class ServerInstance(BaseModel):
    id: str
    name: str
    core_type: str
    core_version: str = ""
    mc_version: str
    path: str
    jar_path: str
    startup_mode: StartupMode = "jar"
    java_path: str
    max_memory: int
    min_memory: int
    jvm_args: list[str] = []
    port: int
    online_mode: Optional[bool] = None
    created_at: int
    last_started_at: Optional[int] = None
