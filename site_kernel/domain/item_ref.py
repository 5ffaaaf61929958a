"""
Item identity.

Requisition lines, purchase-request lines and ledger entries refer to the
thing being bought either by catalog id (material, equipment or PPE) or,
for legacy rows captured before the catalog existed, by free-text
description plus category.  ``ItemRef`` models that as a tagged union:

    ItemRef = ById(kind, item_id) | ByDescription(description, category)

Description references are resolved to ids once, when a snapshot is
built (``ItemCatalog.resolve``).  ``items_match`` is the single place where
two references are compared; nothing else compares descriptions inline.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from site_kernel.logging_config import get_logger

logger = get_logger("domain.item_ref")


class ItemKind(str, Enum):
    """What a requisition line asks for."""

    MATERIAL = "material"
    SERVICE = "service"
    EQUIPMENT = "equipment"
    PPE = "ppe"


def normalize_text(value: str | None) -> str:
    """Collapse whitespace and upper-case for description comparison."""
    if not value:
        return ""
    return " ".join(value.split()).upper()


@dataclass(frozen=True)
class ById:
    """Reference to a catalog entry by id."""

    kind: ItemKind
    item_id: UUID | str

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind.value, str(self.item_id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.item_id}"


@dataclass(frozen=True)
class ByDescription:
    """Legacy reference by description and category."""

    description: str
    category: str = ""
    kind: ItemKind = ItemKind.MATERIAL

    @property
    def key(self) -> tuple[str, str, str]:
        return (
            self.kind.value,
            normalize_text(self.description),
            normalize_text(self.category),
        )

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.description} [{self.category}]"


ItemRef = ById | ByDescription


@dataclass(frozen=True)
class CatalogItem:
    """One catalog entry (material, equipment or PPE)."""

    item_id: UUID | str
    kind: ItemKind
    description: str
    category: str = ""
    unit: str = "und"
    detail: str = ""
    stock_max: Decimal = Decimal("0")

    @property
    def ref(self) -> ById:
        return ById(self.kind, self.item_id)


class ItemCatalog:
    """
    Lookup over catalog entries used to canonicalise item references.

    Contract:
        ``resolve`` turns a ``ByDescription`` into a ``ById`` when exactly
        one catalog entry of the same kind has that description and
        category; otherwise the reference is returned unchanged.
    """

    def __init__(self, items: Iterable[CatalogItem] = ()):
        self._by_id: dict[tuple[str, str], CatalogItem] = {}
        self._by_description: dict[tuple[str, str, str], list[CatalogItem]] = {}
        for item in items:
            self.add(item)

    def add(self, item: CatalogItem) -> None:
        self._by_id[item.ref.key] = item
        key = (
            item.kind.value,
            normalize_text(item.description),
            normalize_text(item.category),
        )
        self._by_description.setdefault(key, []).append(item)

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[CatalogItem]:
        return iter(self._by_id.values())

    def get(self, ref: ItemRef | None) -> CatalogItem | None:
        """Return the catalog entry a reference points at, if unambiguous."""
        if ref is None:
            return None
        if isinstance(ref, ById):
            return self._by_id.get(ref.key)
        candidates = self._by_description.get(ref.key, [])
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.warning(
                "item_description_ambiguous",
                extra={"item": str(ref), "candidates": len(candidates)},
            )
        return None

    def resolve(self, ref: ItemRef | None) -> ItemRef | None:
        """Canonicalise a reference to ``ById`` where possible."""
        if ref is None or isinstance(ref, ById):
            return ref
        item = self.get(ref)
        return item.ref if item is not None else ref

    def find_by_description(
        self,
        description: str,
        kind: ItemKind = ItemKind.MATERIAL,
    ) -> CatalogItem | None:
        """Match on description alone (budget spreadsheets carry no category)."""
        wanted = normalize_text(description)
        if not wanted:
            return None
        matches = [
            item
            for (k, desc, _cat), items in self._by_description.items()
            if k == kind.value and desc == wanted
            for item in items
        ]
        return matches[0] if len(matches) == 1 else None


def items_match(
    a: ItemRef | None,
    b: ItemRef | None,
    catalog: ItemCatalog | None = None,
) -> bool:
    """
    True when two references denote the same item.

    Rules:
        - ``None`` never matches anything (a line without item data cannot
          be reconciled).
        - Two ids match on (kind, id).
        - Two descriptions match on normalised (kind, description, category).
        - A mixed pair matches only through the catalog.
    """
    if a is None or b is None:
        return False
    if catalog is not None:
        a = catalog.resolve(a)
        b = catalog.resolve(b)
    if type(a) is not type(b):
        return False
    return a.key == b.key
