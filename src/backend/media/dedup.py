"""
Duplicate detection over existing media records.

Records created before ids became deterministic can share a normalized url
with each other (or with the canonical record). DedupIndex groups records by
(owner, normalized url) so the store can collapse each group down to the one
record whose id is the deterministic id for that pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional

from .models import MediaRecord


# (owner_id, url) -> deterministic record id
RecordIdFunc = Callable[[str, str], str]
NormalizeFunc = Callable[[str], str]


@dataclass
class DuplicateGroup:
    """All records of one owner that normalize to the same url."""
    owner_id: str
    normalized_url: str
    canonical_id: str
    records: list[MediaRecord] = field(default_factory=list)

    @property
    def canonical(self) -> Optional[MediaRecord]:
        for record in self.records:
            if record.id == self.canonical_id:
                return record
        return None

    @property
    def strays(self) -> list[MediaRecord]:
        """Records that are not the canonical one, oldest first."""
        return sorted(
            (r for r in self.records if r.id != self.canonical_id),
            key=lambda r: r.created_at,
        )

    @property
    def needs_cleanup(self) -> bool:
        return bool(self.strays)


@dataclass
class DedupIndex:
    """
    In-memory (owner, normalized url) index.

    Usage:
        index = DedupIndex(normalize=store.normalize, record_id=store.record_id)
        index.load(store.list_for_owner(owner_id))

        for group in index.groups_needing_cleanup():
            ...

        if not index.is_known(owner_id, url):
            index.register(record)
    """

    normalize: NormalizeFunc
    record_id: RecordIdFunc

    _groups: dict[tuple[str, str], DuplicateGroup] = field(default_factory=dict)

    def _key(self, owner_id: str, url: str) -> tuple[str, str]:
        return owner_id, self.normalize(url)

    def register(self, record: MediaRecord) -> DuplicateGroup:
        key = self._key(record.owner_id, record.url)
        group = self._groups.get(key)
        if group is None:
            group = DuplicateGroup(
                owner_id=record.owner_id,
                normalized_url=key[1],
                canonical_id=self.record_id(record.owner_id, record.url),
            )
            self._groups[key] = group
        if all(r.id != record.id for r in group.records):
            group.records.append(record)
        return group

    def load(self, records: Iterable[MediaRecord]) -> int:
        loaded = 0
        for record in records:
            self.register(record)
            loaded += 1
        return loaded

    def is_known(self, owner_id: str, url: str) -> bool:
        return self._key(owner_id, url) in self._groups

    def groups_needing_cleanup(self) -> Iterator[DuplicateGroup]:
        for group in list(self._groups.values()):
            if group.needs_cleanup:
                yield group

    def resolve(self, group: DuplicateGroup, survivor: MediaRecord) -> None:
        """Record that `group` now holds only `survivor`."""
        group.records = [survivor]

    def stats(self) -> dict:
        return {
            "pairs": len(self._groups),
            "records": sum(len(g.records) for g in self._groups.values()),
            "groups_needing_cleanup": sum(1 for g in self._groups.values() if g.needs_cleanup),
        }
