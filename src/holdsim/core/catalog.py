"""
Sector / niche / upgrade catalog loading.

The catalog is static content authored upstream (JSON or dicts). Loading
validates its shape and raises ``CatalogConfigError`` on anything the
engines could not use: a niche pointing at an unknown sector, a sector
with no niche template, a malformed seasonality curve, and so on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from holdsim.core.errors import CatalogConfigError
from holdsim.core.models import Niche, NicheUpgrade, Sector

_NICHE_FIELDS = set(Niche.__dataclass_fields__)
_UPGRADE_FIELDS = set(NicheUpgrade.__dataclass_fields__)


@dataclass
class Catalog:
    sectors: list[Sector] = field(default_factory=list)
    niches: list[Niche] = field(default_factory=list)
    upgrades: list[NicheUpgrade] = field(default_factory=list)

    def niches_for(self, sector_id: str) -> list[Niche]:
        return [n for n in self.niches if n.sector_id == sector_id]

    def upgrades_for(self, niche_id: str) -> list[NicheUpgrade]:
        return [u for u in self.upgrades if u.niche_id == niche_id]


def _build_niche(sector_id: str, d: dict[str, Any]) -> Niche:
    for key in ("id", "code", "name"):
        if key not in d:
            raise CatalogConfigError(f"Niche in sector '{sector_id}' is missing '{key}'")
    kwargs = {k: v for k, v in d.items() if k in _NICHE_FIELDS and k != "upgrades"}
    kwargs["sector_id"] = sector_id
    niche = Niche(**kwargs)

    if niche.seasonality and len(niche.seasonality) != 12:
        raise CatalogConfigError(
            f"Niche '{niche.id}' seasonality must have 12 monthly values, "
            f"got {len(niche.seasonality)}"
        )
    for seg in niche.segments:
        if "name" not in seg:
            raise CatalogConfigError(f"Niche '{niche.id}' has a segment without a name")
        if float(seg.get("demand_share", 0.0)) < 0:
            raise CatalogConfigError(
                f"Niche '{niche.id}' segment '{seg['name']}' has a negative demand share"
            )
    if niche.segments and sum(float(s.get("demand_share", 0.0)) for s in niche.segments) <= 0:
        raise CatalogConfigError(f"Niche '{niche.id}' segments have no demand share")
    return niche


def _build_upgrade(niche_id: str, d: dict[str, Any]) -> NicheUpgrade:
    for key in ("id", "code", "name"):
        if key not in d:
            raise CatalogConfigError(f"Upgrade in niche '{niche_id}' is missing '{key}'")
    kwargs = {k: v for k, v in d.items() if k in _UPGRADE_FIELDS}
    kwargs["niche_id"] = niche_id
    upgrade = NicheUpgrade(**kwargs)
    if upgrade.cost is None and upgrade.capex_pct_range is None:
        raise CatalogConfigError(
            f"Upgrade '{upgrade.id}' needs either 'cost' or 'capex_pct_range'"
        )
    for rng_name in ("capex_pct_range", "opex_pct_range"):
        rng = getattr(upgrade, rng_name)
        if rng is not None and (len(rng) != 2 or float(rng[0]) > float(rng[1])):
            raise CatalogConfigError(f"Upgrade '{upgrade.id}' has invalid {rng_name}: {rng}")
    for effect in upgrade.effects:
        if "variable" not in effect:
            raise CatalogConfigError(f"Upgrade '{upgrade.id}' has an effect without a variable")
    return upgrade


def load_catalog(data: dict[str, Any]) -> Catalog:
    """Build and validate a ``Catalog`` from nested dicts.

    Expected shape::

        {"sectors": [{"id", "code", "name",
                      "niches": [{"id", "code", "name", ...,
                                  "upgrades": [{"id", "code", "name", ...}]}]}]}
    """
    catalog = Catalog()
    sector_ids: set[str] = set()
    niche_ids: set[str] = set()

    for sd in data.get("sectors", []):
        for key in ("id", "code", "name"):
            if key not in sd:
                raise CatalogConfigError(f"Sector entry is missing '{key}'")
        if sd["id"] in sector_ids:
            raise CatalogConfigError(f"Duplicate sector id '{sd['id']}'")
        sector_ids.add(sd["id"])
        catalog.sectors.append(Sector(id=sd["id"], code=sd["code"], name=sd["name"]))

        niches = sd.get("niches") or []
        if not niches:
            raise CatalogConfigError(f"Sector '{sd['code']}' has no niche templates")
        for nd in niches:
            niche = _build_niche(sd["id"], nd)
            if niche.id in niche_ids:
                raise CatalogConfigError(f"Duplicate niche id '{niche.id}'")
            niche_ids.add(niche.id)
            catalog.niches.append(niche)
            for ud in nd.get("upgrades") or []:
                catalog.upgrades.append(_build_upgrade(niche.id, ud))

    return catalog


def load_catalog_file(path: str | Path) -> Catalog:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogConfigError(f"Cannot read catalog file {path}: {exc}") from exc
    return load_catalog(raw)
