"""
settlement_kernel.config
========================

Responsibility:
    Configuration schema for the settlement engine.  Defines the structure,
    validation rules, and defaults for settlement settings.  Values may be
    supplied in code, from a dict, or from a YAML file.

Invariants enforced:
    - ``amount_places`` is between 0 and 9 (storage precision).
    - ``tender_aliases`` only map onto canonical, non-debt tender labels.
    - Retry limits are positive.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
    - Unknown keys in a dict or YAML file -> ``ValueError``.
    - Missing YAML file -> ``FileNotFoundError`` propagates.
    - Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self

import yaml

from settlement_kernel.logging_config import get_logger

logger = get_logger("config")

# Canonical labels an alias may point at.  Aliasing onto "debt" is refused:
# a payment label must never silently become a debt.
_ALIASABLE_LABELS = frozenset({"cash", "mobile", "card"})


def _default_aliases() -> dict[str, str]:
    return {"mpesa": "mobile", "kcb": "card"}


@dataclass
class SettlementConfig:
    """
    Configuration schema for the settlement engine.

    Contract:
        All fields have defaults suitable for a single-currency hotel.
        ``__post_init__`` validates all constraints and raises ``ValueError``
        on violation.

    Example::

        config = SettlementConfig.from_yaml(Path("settlement.yaml"))
    """

    currency: str = "KES"
    amount_places: int = 2

    # Labels written by older front ends, mapped to canonical tender labels
    tender_aliases: dict[str, str] = field(default_factory=_default_aliases)

    # Retry limits
    max_apply_attempts: int = 3
    stock_cas_attempts: int = 5

    # Persistence
    database_url: str = "sqlite:///settlement.db"
    db_timeout_seconds: float = 30.0

    def __post_init__(self):
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")
        self.currency = self.currency.upper()

        if not 0 <= self.amount_places <= 9:
            raise ValueError("amount_places must be between 0 and 9")

        normalized: dict[str, str] = {}
        for alias, target in self.tender_aliases.items():
            alias, target = alias.strip().lower(), target.strip().lower()
            if target not in _ALIASABLE_LABELS:
                raise ValueError(
                    f"tender alias '{alias}' must map to one of "
                    f"{sorted(_ALIASABLE_LABELS)}, got '{target}'"
                )
            if alias in _ALIASABLE_LABELS or alias == "debt":
                raise ValueError(f"tender alias '{alias}' shadows a canonical label")
            normalized[alias] = target
        self.tender_aliases = normalized

        if self.max_apply_attempts < 1:
            raise ValueError("max_apply_attempts must be at least 1")
        if self.stock_cas_attempts < 1:
            raise ValueError("stock_cas_attempts must be at least 1")
        if self.db_timeout_seconds <= 0:
            raise ValueError("db_timeout_seconds must be positive")

        logger.info(
            "settlement_config_initialized",
            extra={
                "currency": self.currency,
                "amount_places": self.amount_places,
                "alias_count": len(self.tender_aliases),
                "max_apply_attempts": self.max_apply_attempts,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. loaded from a file)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settlement config keys: {unknown}")
        logger.info(
            "settlement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> Self:
        """
        Load config from a YAML file.

        The file holds a mapping, optionally nested under a top-level
        ``settlement:`` key.
        """
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        if "settlement" in data and isinstance(data["settlement"], dict):
            data = data["settlement"]
        return cls.from_dict(data)
