"""Registry of protected operations and their configuration."""

import importlib
import inspect
import logging
import threading
from collections.abc import Callable, Iterable

from .config import OperationConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ATTR = "__idempotent__"


def operation_id_for(func: Callable) -> str:
    """Stable identifier: qualified name plus the parameter-type signature.

    Example:
        def create_order(user_id: int, items: list): ...
        -> "shop.orders.create_order#int,list"
    """
    try:
        parameters = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        parameters = []

    type_names = []
    for parameter in parameters:
        annotation = parameter.annotation
        if annotation is inspect.Parameter.empty:
            type_names.append("object")
        elif isinstance(annotation, str):
            type_names.append(annotation)
        else:
            type_names.append(getattr(annotation, "__qualname__", repr(annotation)))

    return f"{func.__module__}.{func.__qualname__}#{','.join(type_names)}"


class OperationRegistry:
    """Operation id -> ``OperationConfig``, populated once at startup."""

    def __init__(self) -> None:
        self._configs: dict[str, OperationConfig] = {}
        self._lock = threading.Lock()

    def register(self, config: OperationConfig) -> OperationConfig:
        with self._lock:
            self._configs[config.operation_id] = config
        logger.debug("Registered idempotent operation: %s", config.operation_id)
        return config

    def get(self, operation_id: str) -> OperationConfig:
        """Look up an operation's configuration.

        Raises:
            ConfigurationError: If the operation was never registered
        """
        config = self._configs.get(operation_id)
        if config is None:
            raise ConfigurationError(
                f"No idempotent configuration registered for {operation_id}"
            )
        return config

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._configs

    def __len__(self) -> int:
        return len(self._configs)

    def scan(self, modules: Iterable[str]) -> int:
        """Import modules and register their ``@idempotent`` operations.

        Module-level functions and methods of module-level classes are
        inspected.

        Args:
            modules: Dotted module names

        Returns:
            Number of operations registered

        Raises:
            ConfigurationError: If no modules are given
        """
        module_names = list(modules)
        if not module_names:
            raise ConfigurationError("No modules configured to scan for idempotent operations")

        logger.info("Scanning for idempotent operations in: %s", module_names)
        found = 0
        for name in module_names:
            module = importlib.import_module(name)
            for config in _collect_configs(module):
                self.register(config)
                found += 1

        logger.info("Idempotent scan finished, %d operations registered", found)
        return found


def _collect_configs(module: object) -> Iterable[OperationConfig]:
    seen: set[str] = set()
    candidates: list[object] = []
    for _, member in inspect.getmembers(module):
        if inspect.isclass(member):
            candidates.extend(vars(member).values())
        else:
            candidates.append(member)

    for candidate in candidates:
        if isinstance(candidate, (staticmethod, classmethod)):
            candidate = candidate.__func__
        config = getattr(candidate, CONFIG_ATTR, None)
        if isinstance(config, OperationConfig) and config.operation_id not in seen:
            seen.add(config.operation_id)
            yield config
