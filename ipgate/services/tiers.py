"""Rate-limit tiers and the static route-to-tier mapping."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ipgate.core.config import Settings, split_csv


class Tier(str, enum.Enum):
    """Named rate-limit policies."""
    PUBLIC = "public"
    AUTH = "auth"
    ADMIN = "admin"


@dataclass(frozen=True)
class TierLimit:
    """Window size and budget of one tier."""

    window_seconds: float
    budget: int
    auto_block: bool = True

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if self.budget < 1:
            raise ValueError("budget must be at least 1")


DEFAULT_LIMITS: dict[Tier, TierLimit] = {
    Tier.PUBLIC: TierLimit(window_seconds=60.0, budget=100),
    Tier.AUTH: TierLimit(window_seconds=60.0, budget=10),
    Tier.ADMIN: TierLimit(window_seconds=60.0, budget=20),
}


class TierPolicy:
    """
    Pure mapping `tier -> TierLimit`.

    Holds no mutable state; counting lives in `WindowCounter`.
    """

    def __init__(self, limits: Mapping[Tier, TierLimit] | None = None) -> None:
        merged = dict(DEFAULT_LIMITS)
        merged.update(limits or {})
        self._limits = merged

    @classmethod
    def from_settings(cls, settings: Settings) -> TierPolicy:
        auto_block = {Tier(name) for name in split_csv(settings.auto_block_tiers)}
        return cls(
            {
                Tier.PUBLIC: TierLimit(
                    window_seconds=settings.rate_limit_public_window_seconds,
                    budget=settings.rate_limit_public_requests,
                    auto_block=Tier.PUBLIC in auto_block,
                ),
                Tier.AUTH: TierLimit(
                    window_seconds=settings.rate_limit_auth_window_seconds,
                    budget=settings.rate_limit_auth_requests,
                    auto_block=Tier.AUTH in auto_block,
                ),
                Tier.ADMIN: TierLimit(
                    window_seconds=settings.rate_limit_admin_window_seconds,
                    budget=settings.rate_limit_admin_requests,
                    auto_block=Tier.ADMIN in auto_block,
                ),
            }
        )

    def limit_for(self, tier: Tier) -> TierLimit:
        return self._limits[tier]

    def items(self) -> Iterable[tuple[Tier, TierLimit]]:
        return self._limits.items()


class RouteTiers:
    """Longest-prefix mapping from request path to tier; unmatched paths are public."""

    def __init__(self, rules: Iterable[tuple[str, Tier]]) -> None:
        normalized = [(prefix.rstrip("/") or "/", tier) for prefix, tier in rules]
        self._rules = sorted(normalized, key=lambda rule: len(rule[0]), reverse=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> RouteTiers:
        rules = [(p, Tier.AUTH) for p in split_csv(settings.auth_path_prefixes)]
        rules += [(p, Tier.ADMIN) for p in split_csv(settings.admin_path_prefixes)]
        return cls(rules)

    def tier_for(self, path: str) -> Tier:
        for prefix, tier in self._rules:
            if path == prefix or path.startswith(prefix + "/") or prefix == "/":
                return tier
        return Tier.PUBLIC
