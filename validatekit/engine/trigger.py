from __future__ import annotations

import fnmatch
from collections.abc import Mapping
from dataclasses import dataclass, field

from validatekit.engine.model import ALLOWED_EVENT_KINDS, Event
from validatekit.errors import ConfigurationError


def _patterns(raw: tuple[str, ...] | list[str], label: str) -> tuple[str, ...]:
    out: list[str] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, str) or not item.strip():
            raise ConfigurationError(f"{label}[{idx}] must be a non-empty string")
        out.append(item.strip())
    return tuple(out)


@dataclass(frozen=True)
class TriggerFilter:
    """Optional branch/path globs for one event kind. Empty means "match everything"."""

    branches: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "branches", _patterns(self.branches, "branches"))
        object.__setattr__(self, "paths", _patterns(self.paths, "paths"))

    def matches(self, event: Event) -> bool:
        if self.branches:
            branch = event.base_ref if event.kind == "pull_request" and event.base_ref else event.branch
            if branch is None:
                return False
            if not any(fnmatch.fnmatchcase(branch, pattern) for pattern in self.branches):
                return False
        if self.paths:
            # Without a change list there is nothing to rule the event out.
            if not event.changed_paths:
                return True
            return any(
                fnmatch.fnmatchcase(path, pattern)
                for path in event.changed_paths
                for pattern in self.paths
            )
        return True


@dataclass(frozen=True)
class TriggerPolicy:
    events: Mapping[str, TriggerFilter] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: dict[str, TriggerFilter] = {}
        for kind, trigger_filter in dict(self.events).items():
            key = str(kind).strip().lower()
            if key not in ALLOWED_EVENT_KINDS:
                allowed = ", ".join(ALLOWED_EVENT_KINDS)
                raise ConfigurationError(f"Unknown trigger event {kind!r} (allowed: {allowed})")
            if trigger_filter is None:
                trigger_filter = TriggerFilter()
            if not isinstance(trigger_filter, TriggerFilter):
                raise ConfigurationError(f"Trigger for {key} must be a TriggerFilter")
            normalized[key] = trigger_filter
        object.__setattr__(self, "events", normalized)

    @classmethod
    def always(cls) -> "TriggerPolicy":
        return cls(events={kind: TriggerFilter() for kind in ALLOWED_EVENT_KINDS})

    def should_run(self, event: Event) -> bool:
        trigger_filter = self.events.get(event.kind)
        if trigger_filter is None:
            return False
        return trigger_filter.matches(event)
