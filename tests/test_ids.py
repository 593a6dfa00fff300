import pytest

from discount_sync.errors import ValidationError
from discount_sync.utils.ids import (
    discount_id_candidates, is_valid_discount_id, is_valid_product_id, normalize_discount_id,
    payload_discount_id, to_product_gid, validate_product_ids, validate_webhook_payload,
)


class TestNormalizeDiscountId:
    def test_bare_numeric_id_is_unchanged(self):
        assert normalize_discount_id("1234567890") == "1234567890"

    def test_gid_returns_numeric_tail(self):
        assert normalize_discount_id("gid://shopify/DiscountAutomaticNode/987") == "987"

    def test_query_string_is_dropped(self):
        assert normalize_discount_id("gid://shopify/DiscountCodeNode/55?x=1") == "55"

    def test_is_idempotent(self):
        once = normalize_discount_id("gid://shopify/DiscountNode/42")
        assert normalize_discount_id(once) == once

    def test_empty_and_none(self):
        assert normalize_discount_id(None) == ""
        assert normalize_discount_id("  ") == ""

    def test_integers_are_accepted(self):
        assert normalize_discount_id(42) == "42"


class TestDiscountIdCandidates:
    def test_order_for_bare_id(self):
        assert discount_id_candidates("42") == [
            "gid://shopify/DiscountAutomaticNode/42",
            "gid://shopify/DiscountCodeNode/42",
            "gid://shopify/DiscountNode/42",
            "42",
        ]

    def test_mismatched_subtype_keeps_original_and_bare(self):
        raw = "gid://shopify/DiscountCodeBasic/42"
        candidates = discount_id_candidates(raw)
        assert candidates[:3] == [
            "gid://shopify/DiscountAutomaticNode/42",
            "gid://shopify/DiscountCodeNode/42",
            "gid://shopify/DiscountNode/42",
        ]
        assert raw in candidates
        assert "42" in candidates

    def test_matching_gid_is_not_duplicated(self):
        raw = "gid://shopify/DiscountCodeNode/42"
        candidates = discount_id_candidates(raw)
        assert candidates.count(raw) == 1
        assert len(candidates) == len(set(candidates))

    @pytest.mark.parametrize("raw", ["1", "gid://shopify/DiscountNode/1", "gid://shopify/Foo/abc", "abc-def"])
    def test_always_at_least_four_including_original(self, raw):
        candidates = discount_id_candidates(raw)
        assert len(candidates) >= 4
        assert raw in candidates

    def test_empty_input_has_no_candidates(self):
        assert discount_id_candidates("") == []


class TestValidation:
    def test_discount_id_shapes(self):
        assert is_valid_discount_id("123")
        assert is_valid_discount_id("gid://shopify/DiscountAutomaticNode/123")
        assert is_valid_discount_id("summer_sale-1")
        assert not is_valid_discount_id("")
        assert not is_valid_discount_id("has spaces")
        assert not is_valid_discount_id(None)

    def test_product_id_shapes(self):
        assert is_valid_product_id("gid://shopify/Product/1")
        assert is_valid_product_id("1")
        assert not is_valid_product_id("gid://shopify/Collection/1")
        assert not is_valid_product_id("abc")

    def test_product_id_list_must_be_non_empty(self):
        with pytest.raises(ValidationError):
            validate_product_ids([])
        with pytest.raises(ValidationError):
            validate_product_ids("gid://shopify/Product/1")
        with pytest.raises(ValidationError):
            validate_product_ids(["gid://shopify/Product/1", "nope"])

    def test_webhook_payload_needs_an_id(self):
        with pytest.raises(ValidationError):
            validate_webhook_payload({"title": "x"})
        with pytest.raises(ValidationError):
            validate_webhook_payload(["not", "a", "dict"])
        with pytest.raises(ValidationError):
            validate_webhook_payload({"id": "1", "status": "WHATEVER"})
        assert validate_webhook_payload({"admin_graphql_api_id": "gid://shopify/DiscountAutomaticNode/9"})

    def test_payload_discount_id_prefers_gid(self):
        payload = {"id": 9, "admin_graphql_api_id": "gid://shopify/DiscountCodeNode/10"}
        assert payload_discount_id(payload) == "10"
        assert payload_discount_id({"id": 9}) == "9"

    def test_to_product_gid(self):
        assert to_product_gid("5") == "gid://shopify/Product/5"
        assert to_product_gid("gid://shopify/Product/5") == "gid://shopify/Product/5"
