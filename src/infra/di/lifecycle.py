from enum import Enum


class Lifecycle(Enum):
    """How long a resolved instance lives."""

    SINGLETON = "singleton"
    """Created on first resolve and shared afterwards."""

    FACTORY = "factory"
    """Created anew on every resolve, e.g. one ``HierarchyExplorer`` per traversal."""
