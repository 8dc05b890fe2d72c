"""Type-keyed dependency injection container."""

from __future__ import annotations

import inspect
import threading
import types
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar, Union, cast, get_args, get_origin, get_type_hints

import structlog

from src.infra.di.lifecycle import Lifecycle

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class _Registration:
    factory: Callable[[], Any]
    lifecycle: Lifecycle


def _injectable_type(annotation: Any) -> type[Any] | None:
    """``Foo`` and ``Foo | None`` resolve to ``Foo``; anything else is not injectable."""
    if isinstance(annotation, type):
        return annotation
    if get_origin(annotation) in (types.UnionType, Union):
        non_none = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(non_none) == 1 and isinstance(non_none[0], type):
            return non_none[0]
    return None


class DependencyContainer:
    """Resolve services by type with singleton or factory lifecycles.

    A service registered without a factory is built from its constructor:
    every keyword whose annotation is a registered type (optionally
    ``| None``) is injected, the rest keep their defaults.
    """

    def __init__(self) -> None:
        self._registrations: dict[type[Any], _Registration] = {}
        self._singletons: dict[type[Any], Any] = {}
        self._lock = threading.RLock()
        self._resolving: list[type[Any]] = []

    def register(
        self,
        service_type: type[T],
        factory: Callable[[], T] | None = None,
        *,
        lifecycle: Lifecycle = Lifecycle.SINGLETON,
    ) -> None:
        """Register ``service_type``.

        Raises:
            ValueError: If service_type is already registered.
        """
        if service_type in self._registrations:
            raise ValueError(f"Service {service_type.__name__} is already registered")
        self._registrations[service_type] = _Registration(
            factory=factory or self._constructor_factory(service_type),
            lifecycle=lifecycle,
        )
        LOGGER.debug(
            "di.registered",
            service=service_type.__name__,
            lifecycle=lifecycle.value,
        )

    def register_instance(self, service_type: type[T], instance: T) -> None:
        if service_type in self._registrations:
            raise ValueError(f"Service {service_type.__name__} is already registered")
        self._registrations[service_type] = _Registration(lambda: instance, Lifecycle.SINGLETON)
        self._singletons[service_type] = instance

    def resolve(self, service_type: type[T]) -> T:
        """Return an instance of ``service_type``.

        Raises:
            KeyError: If the service is not registered.
            RuntimeError: If resolving it would recurse into itself.
        """
        registration = self._registrations.get(service_type)
        if registration is None:
            raise KeyError(f"Service {service_type.__name__} is not registered")

        if service_type in self._resolving:
            chain = [t.__name__ for t in (*self._resolving, service_type)]
            raise RuntimeError(f"Circular dependency detected: {' -> '.join(chain)}")

        self._resolving.append(service_type)
        try:
            if registration.lifecycle is Lifecycle.FACTORY:
                return cast(T, registration.factory())
            with self._lock:
                if service_type not in self._singletons:
                    self._singletons[service_type] = registration.factory()
                return cast(T, self._singletons[service_type])
        finally:
            self._resolving.pop()

    def is_registered(self, service_type: type[Any]) -> bool:
        return service_type in self._registrations

    def clear(self) -> None:
        """Forget every registration and cached instance (tests only)."""
        with self._lock:
            self._registrations.clear()
            self._singletons.clear()
            self._resolving.clear()

    def _constructor_factory(self, service_type: type[T]) -> Callable[[], T]:
        def factory() -> T:
            signature = inspect.signature(service_type.__init__)
            hints = get_type_hints(service_type.__init__)
            kwargs: dict[str, Any] = {}
            for name, param in signature.parameters.items():
                if name == "self" or param.kind in (
                    inspect.Parameter.VAR_POSITIONAL,
                    inspect.Parameter.VAR_KEYWORD,
                ):
                    continue
                dependency = _injectable_type(hints.get(name))
                if dependency is None or not self.is_registered(dependency):
                    if param.default is inspect.Parameter.empty:
                        raise KeyError(
                            f"Cannot inject parameter '{name}' of {service_type.__name__}"
                        )
                    continue
                kwargs[name] = self.resolve(dependency)
            return service_type(**kwargs)

        return factory


__all__ = ["DependencyContainer"]
