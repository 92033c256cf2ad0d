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
]


class InstanceSupervisorError(Exception):
    pass


class ValidationError(InstanceSupervisorError):
    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field: str = field
        self.reason: str = reason


class NotFound(InstanceSupervisorError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id: str = instance_id


class PortInUse(InstanceSupervisorError):
    def __init__(self, port: int, owner: str = "") -> None:
        msg = f"Port {port} is already in use"

        if owner:
            msg += f" by {owner}"

        super().__init__(msg)
        self.port: int = port
        self.owner: str = owner


class NotRunning(InstanceSupervisorError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance {instance_id} is not running")
        self.instance_id: str = instance_id


class InvalidTransition(InstanceSupervisorError):
    pass


class SpawnFailure(InstanceSupervisorError):
    def __init__(self, message: str, os_error: OSError | None = None) -> None:
        if os_error is not None:
            message = f"{message}: {os_error}"

        super().__init__(message)
        self.os_error: OSError | None = os_error


class UnsupportedModpackFormat(InstanceSupervisorError):
    pass


class NoLaunchableEntryFound(InstanceSupervisorError):
    pass


class CatalogError(InstanceSupervisorError):
    pass
