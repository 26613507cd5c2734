"""
Tenant scope: the set of franchise (subaccount) ids a caller may touch.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class TenantScope:
    subaccount_ids: Tuple[str, ...]

    def __post_init__(self) -> None:
        ids = tuple(dict.fromkeys(str(value) for value in self.subaccount_ids if value))
        if not ids:
            raise ValueError("A tenant scope needs at least one subaccount id")
        object.__setattr__(self, "subaccount_ids", ids)

    @classmethod
    def single(cls, subaccount_id: str) -> "TenantScope":
        return cls((subaccount_id,))

    @classmethod
    def of(cls, subaccount_ids: Iterable[str]) -> "TenantScope":
        return cls(tuple(subaccount_ids))

    @property
    def primary(self) -> str:
        return self.subaccount_ids[0]

    @property
    def is_single(self) -> bool:
        return len(self.subaccount_ids) == 1

    def contains(self, subaccount_id: str) -> bool:
        return subaccount_id in self.subaccount_ids

    def __len__(self) -> int:
        return len(self.subaccount_ids)
