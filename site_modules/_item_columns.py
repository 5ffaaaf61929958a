"""
Item reference columns shared by module ORM models.

An ``ItemRef`` is persisted as four nullable columns: ``item_kind``,
``item_id`` (catalog id), ``item_description`` and ``item_category``.
Rows with an ``item_id`` load as ``ById``; rows with only a description
load as ``ByDescription``; rows with neither load as ``None``.
"""

from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from site_kernel.domain.item_ref import ByDescription, ById, ItemKind, ItemRef


def _parse_item_id(value: str) -> UUID | str:
    try:
        return UUID(value)
    except ValueError:
        return value


def item_ref_from_columns(
    kind: str | None,
    item_id: str | None,
    description: str | None,
    category: str | None,
) -> ItemRef | None:
    item_kind = ItemKind(kind) if kind else ItemKind.MATERIAL
    if item_id:
        return ById(item_kind, _parse_item_id(item_id))
    if description:
        return ByDescription(description, category or "", item_kind)
    return None


def item_ref_to_columns(ref: ItemRef | None) -> dict[str, str | None]:
    if ref is None:
        return {
            "item_kind": None,
            "item_id": None,
            "item_description": None,
            "item_category": None,
        }
    if isinstance(ref, ById):
        return {
            "item_kind": ref.kind.value,
            "item_id": str(ref.item_id),
            "item_description": None,
            "item_category": None,
        }
    return {
        "item_kind": ref.kind.value,
        "item_id": None,
        "item_description": ref.description,
        "item_category": ref.category or None,
    }


class ItemRefColumns:
    """Mixin adding the four item reference columns."""

    @declared_attr
    def item_kind(cls) -> Mapped[str | None]:
        return mapped_column(String(20), nullable=True)

    @declared_attr
    def item_id(cls) -> Mapped[str | None]:
        return mapped_column(String(64), nullable=True, index=True)

    @declared_attr
    def item_description(cls) -> Mapped[str | None]:
        return mapped_column(String(500), nullable=True)

    @declared_attr
    def item_category(cls) -> Mapped[str | None]:
        return mapped_column(String(200), nullable=True)

    @property
    def item_ref(self) -> ItemRef | None:
        return item_ref_from_columns(
            self.item_kind, self.item_id, self.item_description, self.item_category
        )

    @item_ref.setter
    def item_ref(self, ref: ItemRef | None) -> None:
        for key, value in item_ref_to_columns(ref).items():
            setattr(self, key, value)
