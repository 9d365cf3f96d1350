# pellet_watch/filters/item_validator.py

"""Raw item cleaning and validation, applied before normalisation."""

import logging
import math
import re
from dataclasses import replace
from typing import Any
from urllib.parse import urlparse

from pellet_watch.config.settings import Settings
from pellet_watch.filters.normalizer import normalize_currency
from pellet_watch.models.raw_item import RawItem

logger = logging.getLogger("pellet_watch.filters")

_PRICE_CHARS_RE = re.compile(r"[^\d.,\-]")
# "1.150" or "12.500.000": dots grouping thousands, no decimal part
_DOT_THOUSANDS_RE = re.compile(r"^\d{1,3}(\.\d{3})+$")

_TRUE_WORDS = frozenset({"true", "yes", "1", "in stock", "in_stock", "available"})
_FALSE_WORDS = frozenset({"false", "no", "0", "out of stock", "out_of_stock", "unavailable"})


def parse_price(raw: Any) -> float | None:
    """Parse a scraped price (number or text such as ``"235,00 €"``)."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    text = _PRICE_CHARS_RE.sub("", str(raw))
    if not text:
        return None
    if "," in text and text.rfind(",") > text.rfind("."):
        # European style: "1.234,50"
        text = text.replace(".", "").replace(",", ".")
    elif _DOT_THOUSANDS_RE.match(text):
        text = text.replace(".", "")
    else:
        text = text.replace(",", "")
    try:
        return float(text)
    except ValueError:
        return None


def parse_in_stock(raw: Any) -> Any:
    """Coerce common stock spellings to ``bool``; leave others untouched."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    return raw


def is_http_url(url: str) -> bool:
    """True for absolute ``http``/``https`` URLs with a host."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ItemValidator:
    """Clean raw scraped items and reject the unusable ones."""

    def __init__(
        self,
        supported_currencies: list[str] | None = None,
        default_currency: str = Settings.DEFAULT_CURRENCY,
    ) -> None:
        self.supported_currencies = frozenset(
            supported_currencies or Settings.SUPPORTED_CURRENCIES
        )
        self.default_currency = default_currency

    def clean(self, item: RawItem) -> RawItem:
        """Return a trimmed copy with parsed price, stock and currency."""
        return replace(
            item,
            product_name=item.product_name.strip(),
            seller_name=item.seller_name.strip(),
            brand=item.brand.strip(),
            description=item.description.strip(),
            source_url=item.source_url.strip(),
            price=parse_price(item.price),
            in_stock=parse_in_stock(item.in_stock),
            currency=normalize_currency(
                item.currency, self.default_currency,
            ),
        )

    def validate(self, item: RawItem) -> list[str]:
        """Return the validation errors for a cleaned item."""
        errors: list[str] = []

        if not item.product_name:
            errors.append("product_name is required")
        if not item.seller_name:
            errors.append("seller_name is required")

        price = item.price
        if (
            not isinstance(price, (int, float))
            or isinstance(price, bool)
            or not math.isfinite(price)
            or price <= 0
        ):
            errors.append("price must be a positive number")

        if item.currency not in self.supported_currencies:
            allowed = ", ".join(sorted(self.supported_currencies))
            errors.append(f"currency must be one of {allowed}")

        if not isinstance(item.in_stock, bool):
            errors.append("in_stock must be a boolean")

        if item.source_url and not is_http_url(item.source_url):
            errors.append("source_url must be a valid HTTP/HTTPS URL")

        return errors

    def validate_batch(
        self, items: list[RawItem],
    ) -> tuple[list[RawItem], list[tuple[RawItem, list[str]]]]:
        """Clean and validate a batch.

        Returns the valid (cleaned) items and the rejected items with
        their error lists.
        """
        valid: list[RawItem] = []
        rejected: list[tuple[RawItem, list[str]]] = []

        for item in items:
            cleaned = self.clean(item)
            errors = self.validate(cleaned)
            if errors:
                logger.warning(
                    "Rejected item '%s' from '%s': %s",
                    item.product_name,
                    item.seller_name,
                    "; ".join(errors),
                )
                rejected.append((item, errors))
                continue
            valid.append(cleaned)

        if rejected:
            logger.info(
                "Validation rejected %d of %d items",
                len(rejected),
                len(items),
            )

        return valid, rejected
