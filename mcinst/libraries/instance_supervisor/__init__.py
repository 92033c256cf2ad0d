from .errors import *
from .log_buffer import LogBuffer, LogRecord
from .validator import ConfigValidator
from .import_resolver import ImportResolver
from .runner import ServerStatus, RuntimeStatus, ProcessController
from .registry import InstanceRegistry
from .properties import ServerPropertiesWriter

__all__ = [
    "InstanceSupervisorError",
    "ValidationError",
    "NotFound",
    "PortInUse",
    "NotRunning",
    "InvalidTransition",
    "SpawnFailure",
    "UnsupportedModpackFormat",
    "NoLaunchableEntryFound",
    "CatalogError",
    "LogBuffer",
    "LogRecord",
    "ConfigValidator",
    "ImportResolver",
    "ServerStatus",
    "RuntimeStatus",
    "ProcessController",
    "InstanceRegistry",
    "ServerPropertiesWriter",
]
