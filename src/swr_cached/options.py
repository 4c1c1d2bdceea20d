"""Per-call cache options merged from instance defaults."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Any


@dataclass(frozen=True)
class CacheOptions:
    """
    Attributes:
        fresh_for: seconds until an entry goes stale (0 = never stale)
        expire: seconds until the backend drops the entry (0 = never)
        timeout: milliseconds before a backend operation fails (0 = no limit)
    """

    fresh_for: float = 0
    expire: int = 0
    timeout: float = 0

    def merged(self, **overrides: Any) -> CacheOptions:
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown cache options: {', '.join(sorted(unknown))}")
        changes = {name: value for name, value in overrides.items() if value is not None}
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
