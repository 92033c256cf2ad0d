from types import SimpleNamespace

__all__ = ["DiContainer"]


class DiContainer(SimpleNamespace):
    """Dependency container. Dependencies are registered once and never replaced."""

    def __setattr__(self, name: str, value) -> None:
        if name in self.__dict__:
            raise AttributeError(f"Cannot override existing dependency '{name}'")
        super().__setattr__(name, value)

    def __getattr__(self, name: str):
        raise AttributeError(f"Dependency '{name}' is not registered")
