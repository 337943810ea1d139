"""Tool catalog loaded from tools.json."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from gearbox.errors import ConfigError
from gearbox.providers import BundleInfo, ToolInfo
from gearbox.validation import validate_json

logger = logging.getLogger(__name__)


def _tool_from_dict(data: dict) -> ToolInfo:
    return ToolInfo(
        name=data["name"],
        description=data.get("description", ""),
        category=data.get("category", "other"),
        language=data.get("language", ""),
        binary_name=data.get("binary_name", data["name"]),
        build_types=dict(data.get("build_types", {})),
    )


def _bundle_from_dict(data: dict) -> BundleInfo:
    return BundleInfo(
        name=data["name"],
        description=data.get("description", ""),
        category=data.get("category", "other"),
        tools=tuple(data.get("tools", ())),
        includes_bundles=tuple(data.get("includes_bundles", ())),
    )


class ToolCatalog:
    """Installable tools and bundles, in file order."""

    def __init__(
        self,
        tools: Iterable[ToolInfo],
        default_build_type: str = "standard",
        bundles: Iterable[BundleInfo] = (),
    ) -> None:
        self._tools = {tool.name: tool for tool in tools}
        self._bundles = {bundle.name: bundle for bundle in bundles}
        self.default_build_type = default_build_type

    @classmethod
    def load(cls, path: Path) -> ToolCatalog:
        """Load and validate a catalog file. A missing file is an empty catalog."""
        if not path.exists():
            logger.warning("Tool catalog not found: %s", path)
            return cls([])
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"Could not read tool catalog {path}: {e}") from e

        valid, error = validate_json(data, "tools")
        if not valid:
            raise ConfigError(f"Invalid tool catalog {path}: {error}")

        return cls(
            (_tool_from_dict(t) for t in data["tools"]),
            default_build_type=data.get("default_build_type", "standard"),
            bundles=(_bundle_from_dict(b) for b in data.get("bundles", ())),
        )

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolInfo | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def build_flag(self, name: str, build_type: str) -> str:
        """Script flag for a build type, or '' when the tool has none."""
        tool = self._tools.get(name)
        if tool is None:
            return ""
        return tool.build_types.get(build_type, "")

    def by_category(self) -> dict[str, list[ToolInfo]]:
        grouped: dict[str, list[ToolInfo]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.category, []).append(tool)
        return grouped

    def search(self, query: str) -> list[ToolInfo]:
        """Tools whose name, description or language contains `query`, ignoring case."""
        term = query.strip().lower()
        if not term:
            return list(self._tools.values())
        return [
            tool
            for tool in self._tools.values()
            if term in tool.name.lower()
            or term in tool.description.lower()
            or term in tool.language.lower()
        ]

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    def bundles(self) -> list[BundleInfo]:
        return list(self._bundles.values())

    def get_bundle(self, name: str) -> BundleInfo | None:
        return self._bundles.get(name)

    def expand_bundle(self, name: str) -> list[str]:
        """Tool names in a bundle, included bundles first, without duplicates.

        Raises ConfigError for an unknown bundle, an include cycle, or a tool
        missing from the catalog.
        """
        tools = _unique(self._expand(name, ()))
        unknown = [tool for tool in tools if tool not in self._tools]
        if unknown:
            raise ConfigError(f"Bundle {name} lists unknown tool(s): {', '.join(unknown)}")
        return tools

    def expand(self, names: Iterable[str]) -> list[str]:
        """Resolve a mix of tool and bundle names into unique tool names."""
        tools: list[str] = []
        for name in names:
            if name in self._bundles:
                tools.extend(self.expand_bundle(name))
            else:
                tools.append(name)
        return _unique(tools)

    def _expand(self, name: str, path: tuple[str, ...]) -> list[str]:
        if name in path:
            raise ConfigError(f"Bundle include cycle: {' -> '.join(path + (name,))}")
        bundle = self._bundles.get(name)
        if bundle is None:
            raise ConfigError(f"Bundle not found: {name}")
        tools: list[str] = []
        for included in bundle.includes_bundles:
            tools.extend(self._expand(included, path + (name,)))
        tools.extend(bundle.tools)
        return tools


def _unique(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(names))
