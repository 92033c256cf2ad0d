__all__ = ["McInstRuntimeError"]


class McInstRuntimeError(Exception):
    pass
