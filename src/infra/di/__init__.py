"""Small dependency injection container used to wire services at startup."""

from src.infra.di.container import DependencyContainer
from src.infra.di.lifecycle import Lifecycle

__all__ = ["DependencyContainer", "Lifecycle"]
