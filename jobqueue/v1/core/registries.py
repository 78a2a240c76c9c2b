from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        if not name:
            raise ValueError(f"{self.name} registry names must be non-empty")
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def find(self, name: str) -> T | None:
        """Get an implementation by name, or None when it is not registered."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def __len__(self) -> int:
        return len(self._implementations)


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process claimed jobs."""

    def __call__(self, job: Any) -> Any:
        """
        Handle a claimed job.

        Args:
            job: The full Job row, already marked running

        Returns:
            Anything (or an awaitable of it) on success. Raising, or returning
            an Exception instance, reports the job as failed with that
            exception's message.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry mapping job types to their handlers.

    One registry is built per worker at startup and frozen once the worker
    loop begins, so handler lookups never race with registration.
    """

    def __init__(self):
        super().__init__("Job")
