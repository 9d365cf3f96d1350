# pellet_watch/models/raw_item.py

"""Raw scraped item as handed over by the scraping collaborator."""

from dataclasses import dataclass, field
from typing import Any

# camelCase keys used by the scraper payloads -> field names
_KEY_ALIASES: dict[str, str] = {
    "sourceUrl": "source_url",
    "url": "source_url",
    "productName": "product_name",
    "sellerName": "seller_name",
    "inStock": "in_stock",
    "rawSpecifications": "raw_specifications",
    "specifications": "raw_specifications",
}

_FIELDS = frozenset({
    "source_url", "product_name", "price", "currency",
    "seller_name", "in_stock", "raw_specifications",
    "brand", "description",
})


@dataclass
class RawItem:
    """One untrusted scraped listing.

    Field values are kept as scraped; :mod:`pellet_watch.filters.item_validator`
    decides whether the item is usable.
    """

    product_name: str
    price: Any
    seller_name: str
    currency: str = ""
    in_stock: Any = True
    source_url: str = ""
    raw_specifications: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )
    brand: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawItem":
        """Build an item from a scraper dict (camelCase or snake_case)."""
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _KEY_ALIASES.get(key, key)
            if name in _FIELDS and name not in values:
                values[name] = value

        specs = values.get("raw_specifications")
        if not isinstance(specs, dict):
            specs = {}

        return cls(
            product_name=str(values.get("product_name") or ""),
            price=values.get("price"),
            seller_name=str(values.get("seller_name") or ""),
            currency=str(values.get("currency") or ""),
            in_stock=values.get("in_stock", True),
            source_url=str(values.get("source_url") or ""),
            raw_specifications=specs,
            brand=str(values.get("brand") or ""),
            description=str(values.get("description") or ""),
        )
