# pellet_watch/models/catalog.py

"""Seller and catalog item models."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ProductAttributes:
    """Typed attribute record for a catalog item.

    ``quantity`` is always expressed in ``unit`` (kilograms); anything
    the normaliser does not recognise lands in ``extra``.
    """

    quantity: float | None = None
    unit: str | None = None
    packaging: str = "unknown"
    extra: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )

    def to_json(self) -> str:
        """Serialise for the ``attributes`` column."""
        return json.dumps(
            {
                "quantity": self.quantity,
                "unit": self.unit,
                "packaging": self.packaging,
                "extra": self.extra,
            },
            ensure_ascii=False,
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | None) -> "ProductAttributes":
        """Rebuild from the ``attributes`` column."""
        if not raw:
            return cls()
        data: dict[str, Any] = json.loads(raw)
        quantity = data.get("quantity")
        return cls(
            quantity=float(quantity) if quantity is not None else None,
            unit=data.get("unit"),
            packaging=str(data.get("packaging") or "unknown"),
            extra={
                str(k): str(v)
                for k, v in (data.get("extra") or {}).items()
            },
        )


@dataclass
class Seller:
    """A vendor selling pellets."""

    id: int
    name: str
    website_url: str | None = None
    location: str | None = None
    created_at: datetime | None = None


@dataclass
class CatalogItem:
    """Canonical, de-duplicated product shared across sellers."""

    id: int
    name: str
    brand: str
    category: str
    attributes: ProductAttributes
    normalized_key: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    merged_into_id: int | None = None
