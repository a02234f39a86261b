"""Immutable building blocks for model snapshots.

Snapshots are frozen dataclasses whose mapping-valued fields are
``FrozenMap`` instances. Every update builds a new map (copy-then-override),
so snapshots can be shared freely between search branches and workers.

Two helpers support deduplication:

- ``fingerprint`` renders a snapshot to a deterministic string, independent
  of dict or set insertion order.
- ``Renaming`` permutes address and proposal atoms; models apply it field
  by field to canonicalise a snapshot under domain symmetry.
"""

from __future__ import annotations

import dataclasses
import itertools
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .domain import Address, Catalog, Proposal

# ---------------------------------------------------------------------------
# Persistent mapping
# ---------------------------------------------------------------------------


class FrozenMap[K, V](Mapping[K, V]):
    """A hashable mapping whose updates return new instances."""

    __slots__ = ("_data", "_hash")

    def __init__(self, items: Mapping[K, V] | Iterable[tuple[K, V]] = ()) -> None:
        self._data: dict[K, V] = dict(items)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._data[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FrozenMap):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {v!r}" for k, v in sorted(self._data.items(), key=repr))
        return f"FrozenMap({{{body}}})"

    def set(self, key: K, value: V) -> FrozenMap[K, V]:
        data = dict(self._data)
        data[key] = value
        return FrozenMap(data)

    def remove(self, key: K) -> FrozenMap[K, V]:
        data = dict(self._data)
        data.pop(key, None)
        return FrozenMap(data)

    def view(self) -> Mapping[K, V]:
        return MappingProxyType(self._data)


# ---------------------------------------------------------------------------
# Atom permutations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Renaming:
    """A permutation of the address and proposal atoms."""

    addresses: Mapping[Address, Address]
    proposals: Mapping[Proposal, Proposal]

    def address(self, a: Address) -> Address:
        return self.addresses.get(a, a)

    def optional_address(self, a: Address | None) -> Address | None:
        return None if a is None else self.address(a)

    def proposal(self, p: Proposal) -> Proposal:
        return self.proposals.get(p, p)

    def keys(self, m: FrozenMap[Address, Any]) -> FrozenMap[Address, Any]:
        """Rename the address keys of ``m``, keeping its values."""
        return FrozenMap((self.address(k), v) for k, v in m.items())


def renamings(catalog: Catalog) -> Iterator[Renaming]:
    """Every permutation of addresses crossed with every permutation of proposals."""
    for addr_perm in itertools.permutations(catalog.addresses):
        addr_map = dict(zip(catalog.addresses, addr_perm, strict=True))
        for prop_perm in itertools.permutations(catalog.proposals):
            prop_map = dict(zip(catalog.proposals, prop_perm, strict=True))
            yield Renaming(MappingProxyType(addr_map), MappingProxyType(prop_map))


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


def _normalise(value: object) -> object:
    if isinstance(value, Mapping):
        return tuple(sorted(((_normalise(k), _normalise(v)) for k, v in value.items()), key=repr))
    if isinstance(value, (set, frozenset)):
        return tuple(sorted((_normalise(v) for v in value), key=repr))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return tuple(
            (f.name, _normalise(getattr(value, f.name))) for f in dataclasses.fields(value)
        )
    return value


def fingerprint(state: object) -> str:
    """Deterministic textual form of a snapshot, usable as a sort key."""
    return repr(_normalise(state))
