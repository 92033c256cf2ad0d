import os
from mcinst.libraries.di_container import DiContainer
from mcinst.libraries.instance_supervisor import ConfigValidator, ImportResolver, InstanceRegistry
from mcinst.services.supervisor import Supervisor
from mcinst.schemas.config import ConfigSchema

__all__ = ["setup_di"]


def setup_di(deps: DiContainer, *, config: dict, data_directory: str) -> None:
    config_obj = ConfigSchema(**(config or {}))

    supervisor_config = config_obj.supervisor.model_dump()

    # data
    deps.supervisor_config = supervisor_config
    deps.data_directory = data_directory

    # libraries
    deps.validator = ConfigValidator()
    deps.resolver = ImportResolver(os.path.join(data_directory, "modpacks"))
    deps.registry = InstanceRegistry(os.path.join(data_directory, "instances.json"), validator=deps.validator)

    # services
    deps.supervisor = Supervisor(
        registry=deps.registry,
        resolver=deps.resolver,
        validator=deps.validator,
        config=deps.supervisor_config,
    )
