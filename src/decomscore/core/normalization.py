"""String canonicalization shared by filtering and eligibility."""

from __future__ import annotations

from typing import Callable

from ..schemas.cluster import canonical_key

_REGION_ALIASES: dict[str, str] = {
    "west us": "westus",
    "west-us": "westus",
    "westus": "westus",
    "west us 2": "westus2",
    "west-us-2": "westus2",
    "westus2": "westus2",
    "east us": "eastus",
    "east-us": "eastus",
    "eastus": "eastus",
    "east us 2": "eastus2",
    "east-us-2": "eastus2",
    "eastus2": "eastus2",
    "west europe": "westeurope",
    "westeurope": "westeurope",
    "north europe": "northeurope",
    "northeurope": "northeurope",
    "southeast asia": "southeastasia",
    "southeastasia": "southeastasia",
    "east asia": "eastasia",
    "eastasia": "eastasia",
}


def normalize_region(raw: str | None) -> str:
    """Canonical region spelling: ``"West US 2"`` and ``"west-us-2"`` become ``"westus2"``."""
    if raw is None or not raw.strip():
        return ""
    key = raw.strip().lower()
    if key in _REGION_ALIASES:
        return _REGION_ALIASES[key]
    compact = "".join(ch for ch in key if ch.isalnum())
    return _REGION_ALIASES.get(compact, compact)


def normalize_text(raw: str | None) -> str:
    if raw is None:
        return ""
    return raw.strip().casefold()


STRING_NORMALIZERS: dict[str, Callable[[str | None], str]] = {
    "region": normalize_region,
}


def normalizer_for(field: str) -> Callable[[str | None], str]:
    """Return the normalizer applied to both sides of a comparison on ``field``."""
    return STRING_NORMALIZERS.get(canonical_key(field), normalize_text)
