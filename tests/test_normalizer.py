# tests/test_normalizer.py

"""Tests for product normalisation and normalized-key building."""

import unittest

from pellet_watch.filters.normalizer import (
    ProductNormalizer,
    build_normalized_key,
    classify_packaging,
    extract_quantity,
    format_quantity,
    normalize_currency,
)
from pellet_watch.models.catalog import ProductAttributes


class TestExtractQuantity(unittest.TestCase):
    """Quantity parsing from free text."""

    def test_kilograms(self) -> None:
        self.assertEqual(extract_quantity("Premium Pellets 15kg"), 15.0)

    def test_kilograms_with_space_and_word(self) -> None:
        self.assertEqual(extract_quantity("Pellets 15 kilograms"), 15.0)

    def test_tonnes_converted_to_kg(self) -> None:
        self.assertEqual(extract_quantity("Big bag 1t"), 1000.0)

    def test_comma_decimal_separator(self) -> None:
        self.assertEqual(extract_quantity("Granulas 1,5 t"), 1500.0)

    def test_first_pattern_wins(self) -> None:
        """Kilograms are checked before tonnes."""
        self.assertEqual(extract_quantity("15kg bags, 1 ton pallet"), 15.0)

    def test_no_quantity(self) -> None:
        self.assertIsNone(extract_quantity("Wood pellets A1"))
        self.assertIsNone(extract_quantity(""))


class TestPackaging(unittest.TestCase):
    """Packaging classification."""

    def test_bulk_beats_bag(self) -> None:
        """'big bag' contains 'bag' but is bulk."""
        self.assertEqual(classify_packaging("Pellets big bag 975kg"), "bulk")

    def test_bagged(self) -> None:
        self.assertEqual(classify_packaging("Granulas 15kg maisā"), "bagged")

    def test_unknown_default(self) -> None:
        self.assertEqual(classify_packaging("Premium Pellets"), "unknown")

    def test_multiple_texts(self) -> None:
        self.assertEqual(classify_packaging("", "Pellets", "sold per pallet"), "bagged")


class TestHelpers(unittest.TestCase):
    """Key and currency helpers."""

    def test_format_quantity(self) -> None:
        self.assertEqual(format_quantity(15.0), "15")
        self.assertEqual(format_quantity(1.5), "1.5")

    def test_key_with_quantity(self) -> None:
        attrs = ProductAttributes(quantity=15.0, unit="kg", packaging="bagged")
        self.assertEqual(
            build_normalized_key("wood_pellets", attrs),
            "wood_pellets_15kg_bagged",
        )

    def test_key_without_quantity(self) -> None:
        attrs = ProductAttributes()
        self.assertEqual(
            build_normalized_key("wood_pellets", attrs),
            "wood_pellets_unknown_unknown",
        )

    def test_currency_symbols(self) -> None:
        self.assertEqual(normalize_currency("€"), "EUR")
        self.assertEqual(normalize_currency("usd"), "USD")
        self.assertEqual(normalize_currency(""), "EUR")
        self.assertEqual(normalize_currency("¥"), "JPY")


class TestProductNormalizer(unittest.TestCase):
    """End-to-end normalisation."""

    def setUp(self) -> None:
        self.normalizer = ProductNormalizer()

    def test_normalize_name_only(self) -> None:
        result = self.normalizer.normalize("Premium Pellets 15kg bag")
        self.assertEqual(result.normalized_key, "wood_pellets_15kg_bagged")
        self.assertTrue(result.has_known_quantity)
        self.assertEqual(result.attributes.unit, "kg")

    def test_normalization_is_deterministic(self) -> None:
        """Normalising the same input twice yields the same key."""
        specs = {"weight": "975 kg", "packaging": "big bag"}
        first = self.normalizer.normalize("Pellets A1", specs, "6 mm")
        second = self.normalizer.normalize("Pellets A1", specs, "6 mm")
        self.assertEqual(first.normalized_key, second.normalized_key)
        self.assertEqual(first, second)

    def test_weight_spec_has_priority(self) -> None:
        result = self.normalizer.normalize(
            "Pellets 15kg", {"weight": "975 kg"},
        )
        self.assertEqual(result.attributes.quantity, 975.0)

    def test_bare_number_weight_spec_is_kg(self) -> None:
        result = self.normalizer.normalize("Pellets", {"weight": 15})
        self.assertEqual(result.attributes.quantity, 15.0)

    def test_description_fallback(self) -> None:
        result = self.normalizer.normalize(
            "Premium pellets", description="Packed in 15 kg bags",
        )
        self.assertEqual(result.normalized_key, "wood_pellets_15kg_bagged")

    def test_unknown_quantity_bucket(self) -> None:
        result = self.normalizer.normalize("Premium Pellets")
        self.assertEqual(result.normalized_key, "wood_pellets_unknown_unknown")
        self.assertFalse(result.has_known_quantity)
        self.assertIsNone(result.attributes.unit)

    def test_extra_attributes(self) -> None:
        result = self.normalizer.normalize(
            "Kokskaidu granulas 15kg",
            {"certificate": "ENplus A1", "weight": "15kg"},
            "Diameter 6 mm",
        )
        extra = result.attributes.extra
        self.assertEqual(extra["certificate"], "ENplus A1")
        self.assertEqual(extra["diameter"], "6 mm")
        self.assertEqual(extra["type"], "wood")
        self.assertNotIn("weight", extra)

    def test_custom_category(self) -> None:
        result = ProductNormalizer("briquettes").normalize("Briquettes 10kg")
        self.assertTrue(result.normalized_key.startswith("briquettes_10kg"))


if __name__ == "__main__":
    unittest.main()
