# pellet_watch/filters/normalizer.py

"""Product normalisation: raw scraped names and specs -> canonical key."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from pellet_watch.config.settings import Settings
from pellet_watch.models.catalog import ProductAttributes

logger = logging.getLogger("pellet_watch.normalizer")

UNKNOWN = "unknown"

_NUMBER = r"(\d+(?:[.,]\d+)?)"

# (pattern, multiplier to kilograms); first match wins
_QUANTITY_PATTERNS: list[tuple[re.Pattern[str], float]] = [
    (re.compile(_NUMBER + r"\s*(?:kgs?|kilo(?:gram)?s?)\b", re.IGNORECASE), 1.0),
    (re.compile(_NUMBER + r"\s*(?:t|tons?|tonnes?)\b", re.IGNORECASE), 1000.0),
]

_DIAMETER_RE = re.compile(_NUMBER + r"\s*mm\b", re.IGNORECASE)

# Bulk keywords are checked first: "big bag" also contains "bag"
_BULK_KEYWORDS: tuple[str, ...] = (
    "big bag", "bigbag", "big-bag", "bulk", "beramā", "berama", "birum",
)
_BAGGED_KEYWORDS: tuple[str, ...] = (
    "bag", "maiss", "maisos", "maisā", "maisu", "pallet", "palete",
)

_WOOD_KEYWORDS: tuple[str, ...] = ("kokskaidu", "wood")

# Specification fields folded into the typed record
_KNOWN_SPEC_FIELDS = frozenset({"weight", "packaging"})

_CURRENCY_SYMBOLS: dict[str, str] = {
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
    "¥": "JPY",
    "JPY": "JPY",
    "EUR": "EUR",
    "USD": "USD",
    "GBP": "GBP",
    "EURO": "EUR",
    "EUROS": "EUR",
}


@dataclass(frozen=True)
class NormalizedProduct:
    """Normaliser output: canonical key plus the attributes it came from."""

    normalized_key: str
    category: str
    attributes: ProductAttributes

    @property
    def has_known_quantity(self) -> bool:
        return self.attributes.quantity is not None


def _to_float(raw: str) -> float:
    return float(raw.replace(",", "."))


def format_quantity(quantity: float) -> str:
    """Render ``15.0`` as ``15`` and ``1.5`` as ``1.5``."""
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:.3f}".rstrip("0").rstrip(".")


def extract_quantity(text: str) -> float | None:
    """Return the first quantity found in *text*, in kilograms."""
    if not text:
        return None
    for pattern, multiplier in _QUANTITY_PATTERNS:
        match = pattern.search(text)
        if match:
            return round(_to_float(match.group(1)) * multiplier, 3)
    return None


def _weight_from_spec(value: Any) -> float | None:
    """Parse a ``weight`` spec value; bare numbers are kilograms."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    text = str(value).strip()
    quantity = extract_quantity(text)
    if quantity is not None:
        return quantity
    bare = re.fullmatch(_NUMBER, text)
    if bare:
        return _to_float(bare.group(1))
    return None


def classify_packaging(*texts: str) -> str:
    """Classify packaging as ``bulk``, ``bagged`` or ``unknown``."""
    haystack = " ".join(t for t in texts if t).lower()
    if any(kw in haystack for kw in _BULK_KEYWORDS):
        return "bulk"
    if any(kw in haystack for kw in _BAGGED_KEYWORDS):
        return "bagged"
    return UNKNOWN


def normalize_currency(
    raw: str | None, default: str = Settings.DEFAULT_CURRENCY,
) -> str:
    """Map a currency symbol or code to its ISO code."""
    if not raw:
        return default
    text = str(raw).strip()
    return (
        _CURRENCY_SYMBOLS.get(text.upper())
        or _CURRENCY_SYMBOLS.get(text)
        or default
    )


def build_normalized_key(
    category: str, attributes: ProductAttributes,
) -> str:
    """Compose ``{category}_{quantity}{unit}_{packaging}``."""
    if attributes.quantity is None:
        size = UNKNOWN
    else:
        size = f"{format_quantity(attributes.quantity)}{attributes.unit or 'kg'}"
    return f"{category}_{size}_{attributes.packaging}"


class ProductNormalizer:
    """Turn a raw product name and loose specs into a canonical key.

    Pure and deterministic: the same inputs always give the same key.
    """

    def __init__(self, category: str = Settings.DEFAULT_CATEGORY) -> None:
        self.category = category

    def extract_attributes(
        self,
        product_name: str,
        specifications: dict[str, Any] | None = None,
        description: str = "",
    ) -> ProductAttributes:
        """Build the typed attribute record.

        Quantity priority: ``weight`` spec, then the name, then the
        description.
        """
        specs = specifications or {}

        quantity: float | None = None
        if specs.get("weight") not in (None, ""):
            quantity = _weight_from_spec(specs["weight"])
        if quantity is None:
            quantity = extract_quantity(product_name)
        if quantity is None:
            quantity = extract_quantity(description)

        packaging = classify_packaging(
            str(specs.get("packaging") or ""), product_name, description,
        )

        extra: dict[str, str] = {
            str(k): str(v)
            for k, v in specs.items()
            if k not in _KNOWN_SPEC_FIELDS and v not in (None, "")
        }
        if "diameter" not in extra:
            diameter = _DIAMETER_RE.search(description or "")
            if diameter:
                extra["diameter"] = f"{diameter.group(1)} mm"
        if "type" not in extra:
            lowered = f"{product_name} {description}".lower()
            if any(kw in lowered for kw in _WOOD_KEYWORDS):
                extra["type"] = "wood"

        return ProductAttributes(
            quantity=quantity,
            unit="kg" if quantity is not None else None,
            packaging=packaging,
            extra=extra,
        )

    def normalize(
        self,
        product_name: str,
        specifications: dict[str, Any] | None = None,
        description: str = "",
    ) -> NormalizedProduct:
        """Normalise one product into its key and attribute record."""
        attributes = self.extract_attributes(
            product_name, specifications, description,
        )
        key = build_normalized_key(self.category, attributes)
        if attributes.quantity is None:
            logger.debug(
                "No quantity found for '%s', using %s bucket",
                product_name,
                key,
            )
        return NormalizedProduct(
            normalized_key=key,
            category=self.category,
            attributes=attributes,
        )
