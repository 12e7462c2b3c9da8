from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from validatekit.errors import ConfigurationError

if TYPE_CHECKING:
    from validatekit.engine.model import StageSpec


@dataclass(frozen=True)
class StageRegistry:
    _by_name: dict[str, "StageSpec"]

    @classmethod
    def from_stages(cls, stages: Iterable["StageSpec"]) -> "StageRegistry":
        entries: dict[str, StageSpec] = {}
        for stage in stages:
            if stage.name in entries:
                raise ConfigurationError(f"Duplicate stage name: {stage.name}")
            entries[stage.name] = stage
        return cls(_by_name=entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name

    def available(self) -> tuple[str, ...]:
        return tuple(self._by_name.keys())

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for stage in self._by_name.values():
            rows.append(
                {
                    "stage": stage.name,
                    "display_name": stage.display_name,
                    "runs_on": stage.runs_on,
                    "matrix": {name: list(values) for name, values in stage.axes.axes},
                    "jobs": stage.axes.combination_count(),
                    "fail_fast": stage.fail_fast,
                    "needs": list(stage.needs),
                    "steps": [step.name for step in stage.steps],
                }
            )
        return tuple(rows)

    def get(self, name: str) -> "StageSpec":
        stage = self._by_name.get((name or "").strip())
        if stage is None:
            raise ConfigurationError(f"Unknown stage: {name}")
        return stage

    def resolve(self, name: str) -> "StageSpec":
        """Look up a stage by name, falling back to its display name (case-insensitive)."""

        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("stage name must be a non-empty string")
        key = name.strip()

        direct = self._by_name.get(key)
        if direct is not None:
            return direct

        lowered = key.lower()
        matches = [
            stage
            for stage in self._by_name.values()
            if stage.name.lower() == lowered
            or (stage.display_name is not None and stage.display_name.lower() == lowered)
        ]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            names = ", ".join(stage.name for stage in matches)
            raise ConfigurationError(f"Ambiguous stage: {name} (matches: {names})")

        suggestions = self.suggest(key)
        hint = f" (did you mean: {', '.join(suggestions)})" if suggestions else ""
        available = ", ".join(self.available()) or "<none>"
        raise ConfigurationError(f"Unknown stage: {name}{hint} (available: {available})")

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (name or "").strip()
        if not key:
            return ()
        return tuple(difflib.get_close_matches(key, list(self.available()), n=limit))
