from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from typing import Annotated, Optional


class SupervisorConfigSchema(BaseSettings):
    log_capacity: int = Field(default=5000, ge=1)
    stop_grace_period: float = Field(default=30, gt=0)
    kill_grace_period: float = Field(default=5, gt=0)
    stop_command: str = Field(default="stop", min_length=1)
    java_bin: Optional[str] = None
    default_jvm_args: Annotated[list[str], NoDecode] = []
    output_encoding: str = Field(default="utf-8", min_length=1)

    model_config = SettingsConfigDict(env_prefix="MCINST_")

    @model_validator(mode="before")
    def parse_default_jvm_args(cls, values):
        jvm_args = values.get("default_jvm_args")
        if isinstance(jvm_args, str):
            values["default_jvm_args"] = [arg.strip() for arg in jvm_args.split(",") if arg.strip()]
        return values


class ConfigSchema(BaseModel):
    supervisor: SupervisorConfigSchema = Field(default_factory=SupervisorConfigSchema)
