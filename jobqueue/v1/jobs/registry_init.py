"""
Job registry construction.

Handlers are registered once, before the worker starts. Host applications
contribute handlers through registrar callables named as "module:function";
each registrar receives the registry and registers its own job types.
"""

import importlib
from collections.abc import Callable, Iterable

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.jobs.handlers import ReapStaleJobsHandler
from jobqueue.v1.jobs.policy import RetryPolicy
from jobqueue.v1.jobs.store import JobStore

logger = get_logger(__name__)

Registrar = Callable[[JobRegistry], None]


def load_registrar(spec: str) -> Registrar:
    """Import a registrar from a "module:function" reference."""
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(
            f"Handler registrar must look like 'module:function', got: {spec}"
        )

    module = importlib.import_module(module_name)
    registrar = getattr(module, attr, None)
    if not callable(registrar):
        raise ValueError(f"Handler registrar not found or not callable: {spec}")
    return registrar


def register_builtin_handlers(
    registry: JobRegistry, store: JobStore, policy: RetryPolicy, settings: Settings
) -> None:
    """Register the handlers that ship with the queue."""
    registry.register(
        ReapStaleJobsHandler.job_type, ReapStaleJobsHandler(store, policy, settings)
    )


def build_job_registry(
    store: JobStore,
    policy: RetryPolicy,
    settings: Settings,
    registrars: Iterable[str | Registrar] = (),
) -> JobRegistry:
    """Build a fresh registry with built-in and application handlers."""
    registry = JobRegistry()
    register_builtin_handlers(registry, store, policy, settings)

    for registrar in registrars:
        if isinstance(registrar, str):
            registrar = load_registrar(registrar)
        registrar(registry)

    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
