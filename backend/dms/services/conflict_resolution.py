from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from dms.db.base import as_utc

"""
Conflict Resolution (logique pure, partagée serveur / client terrain).

Rôle (fonctionnel) :
- Détecte un conflit de synchro : la version connue du terrain diffère de la version serveur.
- Résout selon une stratégie :
  - last_write_wins : la modification la plus récente l’emporte (égalité -> serveur).
  - merge : données serveur surchargées par les données terrain, date la plus récente,
    version = max(versions) + 1.
  - manual : données résolues fournies par un coordinateur.
"""


class ResolutionStrategy(str, Enum):
    LAST_WRITE_WINS = "last_write_wins"
    MERGE = "merge"
    MANUAL = "manual"


@dataclass(frozen=True)
class Resolution:
    strategy: str
    winner: str                   # "local" / "server" / "merged" / "manual"
    data: Dict[str, Any]
    version: int
    last_modified: Optional[datetime]


def has_conflict(local_version: Optional[int], server_version: Optional[int]) -> bool:
    if local_version is None or server_version is None:
        return False
    return int(local_version) != int(server_version)


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    a, b = as_utc(a), as_utc(b)
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def resolve_last_write_wins(
    local: Mapping[str, Any],
    server: Mapping[str, Any],
    *,
    local_modified: Optional[datetime],
    server_modified: Optional[datetime],
    local_version: int,
    server_version: int,
) -> Resolution:
    lm, sm = as_utc(local_modified), as_utc(server_modified)
    local_wins = lm is not None and (sm is None or lm > sm)

    if local_wins:
        return Resolution(
            strategy=ResolutionStrategy.LAST_WRITE_WINS.value,
            winner="local",
            data=dict(local),
            version=max(local_version, server_version) + 1,
            last_modified=lm,
        )
    return Resolution(
        strategy=ResolutionStrategy.LAST_WRITE_WINS.value,
        winner="server",
        data=dict(server),
        version=server_version,
        last_modified=sm,
    )


def resolve_merge(
    local: Mapping[str, Any],
    server: Mapping[str, Any],
    *,
    local_modified: Optional[datetime],
    server_modified: Optional[datetime],
    local_version: int,
    server_version: int,
) -> Resolution:
    merged: Dict[str, Any] = dict(server)
    for key, value in local.items():
        # Sous-dictionnaires (ex : data typée) fusionnés champ par champ
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value

    return Resolution(
        strategy=ResolutionStrategy.MERGE.value,
        winner="merged",
        data=merged,
        version=max(local_version, server_version) + 1,
        last_modified=_later(local_modified, server_modified),
    )


def resolve_manual(
    resolved: Mapping[str, Any],
    *,
    local_version: int,
    server_version: int,
    resolved_at: datetime,
) -> Resolution:
    if not resolved:
        raise ValueError("La résolution manuelle exige des données résolues")
    return Resolution(
        strategy=ResolutionStrategy.MANUAL.value,
        winner="manual",
        data=dict(resolved),
        version=max(local_version, server_version) + 1,
        last_modified=as_utc(resolved_at),
    )
