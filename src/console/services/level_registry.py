"""Registry of administrative level kinds (State ... Booth) with explicit leaf flags."""

from __future__ import annotations

import json
import pathlib
import re
from dataclasses import dataclass
from typing import Any, Sequence, cast

import structlog

LOGGER = structlog.get_logger(__name__)

_NORMALISE_RE = re.compile(r"[\s_\-]+")


def normalise_level_name(name: str) -> str:
    """``"Polling Center"``, ``"polling_center"`` and ``"PollingCenter"`` compare equal."""
    return _NORMALISE_RE.sub("", name).lower()


@dataclass(frozen=True, slots=True)
class LevelKind:
    """One level kind of the administrative hierarchy."""

    id: str
    name: str
    rank: int
    is_leaf: bool = False
    parent: str | None = None
    aliases: tuple[str, ...] = ()


class LevelKindRegistry:
    """Central registry for level kinds.

    Loads definitions from JSON so new regions can add levels without code
    changes. Lookups by level name are case- and separator-insensitive and
    also match each kind's aliases.
    """

    def __init__(self, config_path: str | pathlib.Path | None = None) -> None:
        """Initialize registry with optional config path.

        Args:
            config_path: Path to level_kinds.json. If None, uses src/config/level_kinds.json.
        """
        if config_path is None:
            base = pathlib.Path(__file__).parent.parent.parent
            config_path = base / "config" / "level_kinds.json"
        self._config_path = pathlib.Path(config_path)
        self._kinds: dict[str, LevelKind] = {}
        self._name_to_id: dict[str, str] = {}
        self._load_kinds()

    def _load_kinds(self) -> None:
        try:
            if not self._config_path.exists():
                LOGGER.warning(
                    "level_registry.file_not_found",
                    path=str(self._config_path),
                )
                self._kinds = self._get_default_kinds()
                self._build_name_mapping()
                return

            with self._config_path.open(encoding="utf-8") as f:
                raw_loaded: Any = json.load(f)

            if not isinstance(raw_loaded, list):
                raise ValueError("Level kinds JSON must be a list")

            kinds: dict[str, LevelKind] = {}
            for obj in cast(list[Any], raw_loaded):
                if not isinstance(obj, dict):
                    raise ValueError("Each level kind must be a dict")
                item = cast(dict[str, Any], obj)
                if "id" not in item or "name" not in item or "rank" not in item:
                    raise ValueError("Level kind must have id, name, and rank")
                if not isinstance(item["rank"], int) or item["rank"] < 0:
                    raise ValueError("Level kind rank must be a non-negative integer")
                aliases_raw = item.get("aliases")
                aliases: tuple[str, ...] = ()
                if isinstance(aliases_raw, list):
                    aliases = tuple(str(a) for a in cast(list[Any], aliases_raw))

                kind = LevelKind(
                    id=str(item["id"]),
                    name=str(item["name"]),
                    rank=int(item["rank"]),
                    is_leaf=bool(item.get("is_leaf", False)),
                    parent=str(item["parent"]) if item.get("parent") else None,
                    aliases=aliases,
                )
                kinds[kind.id] = kind

            self._kinds = kinds
            self._build_name_mapping()
            LOGGER.info(
                "level_registry.loaded",
                count=len(self._kinds),
                path=str(self._config_path),
            )
        except (OSError, ValueError) as exc:
            LOGGER.exception(
                "level_registry.load_error",
                path=str(self._config_path),
                error=str(exc),
            )
            self._kinds = self._get_default_kinds()
            self._build_name_mapping()

    def _get_default_kinds(self) -> dict[str, LevelKind]:
        defaults = [
            LevelKind(id="state", name="State", rank=0),
            LevelKind(id="district", name="District", rank=1, parent="state"),
            LevelKind(id="assembly", name="Assembly", rank=2, parent="district"),
            LevelKind(id="block", name="Block", rank=3, parent="assembly"),
            LevelKind(id="mandal", name="Mandal", rank=4, parent="block"),
            LevelKind(
                id="polling_center",
                name="Polling Center",
                rank=5,
                is_leaf=True,
                parent="mandal",
                aliases=("Polling Station",),
            ),
            LevelKind(id="booth", name="Booth", rank=6, is_leaf=True, parent="polling_center"),
        ]
        return {k.id: k for k in defaults}

    def _build_name_mapping(self) -> None:
        mapping: dict[str, str] = {}
        for kind in self._kinds.values():
            for label in (kind.name, kind.id, *kind.aliases):
                mapping[normalise_level_name(label)] = kind.id
        self._name_to_id = mapping

    def get_by_id(self, kind_id: str) -> LevelKind | None:
        return self._kinds.get(kind_id)

    def get_by_name(self, level_name: str) -> LevelKind | None:
        """Resolve a free-text level name such as "Polling Center" to its kind."""
        kind_id = self._name_to_id.get(normalise_level_name(level_name))
        if kind_id is None:
            return None
        return self._kinds.get(kind_id)

    def is_leaf(self, level_name: str) -> bool | None:
        """True/False for a known level name, None when the name is not registered."""
        kind = self.get_by_name(level_name)
        return None if kind is None else kind.is_leaf

    def get_parent(self, kind_id: str) -> LevelKind | None:
        kind = self._kinds.get(kind_id)
        if not kind or not kind.parent:
            return None
        return self._kinds.get(kind.parent)

    def get_children(self, kind_id: str) -> list[LevelKind]:
        return sorted(
            (k for k in self._kinds.values() if k.parent == kind_id),
            key=lambda k: (k.rank, k.name),
        )

    def list_all(self) -> Sequence[LevelKind]:
        """All kinds ordered from the top of the hierarchy down."""
        return sorted(self._kinds.values(), key=lambda k: (k.rank, k.name))


_registry: LevelKindRegistry | None = None


def get_registry() -> LevelKindRegistry:
    """Get global level kind registry instance."""
    global _registry
    if _registry is None:
        _registry = LevelKindRegistry()
    return _registry


__all__ = ["LevelKind", "LevelKindRegistry", "get_registry", "normalise_level_name"]
