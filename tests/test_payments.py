import unittest

from utils.errors import UnresolvablePrice
from utils.payments import (
    PRICE_RULES,
    PriceQuery,
    cents_to_units,
    metadata_tokens,
    price_tier,
    resolve_tokens,
    substring_match,
)


class TestResolveTokens(unittest.TestCase):
    def test_exact_price_id(self):
        self.assertEqual(resolve_tokens("price_1R4cZ22NO6PNHfEnEhmEzX2y", {}, 999), 7000)
        self.assertEqual(resolve_tokens("price_1R4cZj2NO6PNHfEn4XiPU4tI", {}, 1), 40000)
        self.assertEqual(resolve_tokens("100000_tokens", {}, None), 100000)

    def test_tier_fallback_for_unknown_price(self):
        self.assertEqual(resolve_tokens("unknown_price", {}, 5), 7000)
        self.assertEqual(resolve_tokens("unknown_price", {}, 10), 7000)
        self.assertEqual(resolve_tokens("unknown_price", {}, 25), 40000)
        self.assertEqual(resolve_tokens("unknown_price", {}, 50), 40000)
        self.assertEqual(resolve_tokens("unknown_price", {}, 500), 100000)

    def test_substring_match_handles_prefixed_ids(self):
        self.assertEqual(resolve_tokens("live_40000_tokens_v2", {}, 500), 40000)

    def test_substring_match_uses_declaration_order(self):
        # Contains both "7000_tokens" and "100000_tokens"; the former is declared first.
        query = PriceQuery(price_key="bundle_7000_tokens_100000_tokens", metadata={}, unit_price=None)
        self.assertEqual(substring_match(query), 7000)

    def test_metadata_tokens_before_tier(self):
        self.assertEqual(resolve_tokens("price_custom", {"tokens": "12345"}, 500), 12345)

    def test_metadata_tokens_ignores_garbage(self):
        self.assertIsNone(metadata_tokens(PriceQuery("p", {"tokens": "lots"}, None)))
        self.assertIsNone(metadata_tokens(PriceQuery("p", {"tokens": "0"}, None)))
        self.assertIsNone(metadata_tokens(PriceQuery("p", {"tokens": True}, None)))
        self.assertEqual(resolve_tokens("price_custom", {"tokens": "-5"}, 20), 40000)

    def test_unresolvable_without_unit_price(self):
        with self.assertRaises(UnresolvablePrice) as ctx:
            resolve_tokens("unknown_price", {}, None)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.details, {"priceId": "unknown_price"})

    def test_tier_skips_negative_price(self):
        self.assertIsNone(price_tier(PriceQuery("p", {}, -1)))

    def test_custom_rule_list(self):
        rules = [rule for rule in PRICE_RULES if rule[0] != "price_tier"]
        with self.assertRaises(UnresolvablePrice):
            resolve_tokens("unknown_price", {}, 25, rules=rules)

    def test_rule_order(self):
        self.assertEqual([name for name, _ in PRICE_RULES], ["exact", "substring", "metadata", "price_tier"])


class TestCentsToUnits(unittest.TestCase):
    def test_conversion(self):
        self.assertEqual(cents_to_units(999), 9.99)
        self.assertEqual(cents_to_units("2500"), 25.0)
        self.assertIsNone(cents_to_units(None))
        self.assertIsNone(cents_to_units("n/a"))


if __name__ == "__main__":
    unittest.main()
