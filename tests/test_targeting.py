import pytest

from discount_sync.services.targeting import TargetingResolver

from fakes import basic_discount, bxgy_discount

AUTO = "gid://shopify/DiscountAutomaticNode/{}"
CODE = "gid://shopify/DiscountCodeNode/{}"


@pytest.fixture
def resolver(shopify, config):
    return TargetingResolver(shopify, config)


class TestGetDiscountTargeting:
    def test_all_items(self, resolver, shopify):
        shopify.add_discount(AUTO.format(1), basic_discount(all_items=True))
        t = resolver.get_discount_targeting("1")
        assert t.applies_to_all_products is True
        assert t.not_found is False

    def test_explicit_products_are_deduped(self, resolver, shopify):
        shopify.add_discount(AUTO.format(1), basic_discount(products=["gid://shopify/Product/1"] * 2))
        assert resolver.get_discount_targeting("1").product_ids == ["gid://shopify/Product/1"]

    def test_probes_code_node_after_automatic(self, resolver, shopify):
        shopify.add_discount(CODE.format(2), basic_discount(typename="DiscountCodeBasic", collections=["gid://shopify/Collection/9"]))
        t = resolver.get_discount_targeting("2")
        assert t.collection_ids == ["gid://shopify/Collection/9"]
        assert shopify.probed[:2] == [AUTO.format(2), CODE.format(2)]

    def test_candidate_failures_are_swallowed(self, resolver, shopify):
        shopify.failing_gids.add(AUTO.format(3))
        shopify.add_discount(CODE.format(3), basic_discount(products=["gid://shopify/Product/1"]))
        assert resolver.get_discount_targeting("3").product_ids == ["gid://shopify/Product/1"]

    def test_bxgy_buys_clause_counts(self, resolver, shopify):
        shopify.add_discount(AUTO.format(4), bxgy_discount(
            gets_products=["gid://shopify/Product/1"],
            buys_products=["gid://shopify/Product/2", "gid://shopify/Product/1"],
        ))
        t = resolver.get_discount_targeting("4")
        assert t.product_ids == ["gid://shopify/Product/1", "gid://shopify/Product/2"]

    def test_code_bxgy_is_recognized(self, resolver, shopify):
        shopify.add_discount(CODE.format(5), bxgy_discount(typename="DiscountCodeBxgy",
                                                           buys_collections=["gid://shopify/Collection/3"]))
        t = resolver.get_discount_targeting("5")
        assert t.not_found is False
        assert t.collection_ids == ["gid://shopify/Collection/3"]

    def test_not_found_differs_from_empty(self, resolver, shopify):
        missing = resolver.get_discount_targeting("404")
        assert missing.not_found is True

        shopify.add_discount(AUTO.format(6), basic_discount())
        empty = resolver.get_discount_targeting("6")
        assert empty.not_found is False
        assert empty.product_ids == []
        assert empty.collection_ids == []
        assert empty.applies_to_all_products is False

    def test_unsupported_subtype_is_not_found(self, resolver, shopify):
        shopify.add_discount(AUTO.format(7), {"__typename": "DiscountAutomaticApp", "title": "App"})
        assert resolver.get_discount_targeting("7").not_found is True

    def test_invalid_id_makes_no_calls(self, resolver, shopify):
        assert resolver.get_discount_targeting("not valid!").not_found is True
        assert shopify.probed == []


class TestGetAffectedProducts:
    def test_all_items_returns_catalog_regardless_of_explicit_ids(self, resolver, shopify):
        catalog = shopify.set_catalog(3)
        d = basic_discount(all_items=True)
        d["customerGets"]["items"]["products"] = {"edges": [{"node": {"id": "gid://shopify/Product/99"}}]}
        shopify.add_discount(AUTO.format(1), d)
        assert resolver.get_affected_products("1") == catalog

    def test_catalog_is_paginated(self, shopify, config):
        from dataclasses import replace
        resolver = TargetingResolver(shopify, replace(config, products_page_size=2))
        catalog = shopify.set_catalog(5)
        assert resolver.get_all_product_ids() == catalog

    def test_collections_are_expanded_and_deduped(self, resolver, shopify):
        shopify.collections = {
            "gid://shopify/Collection/1": ["gid://shopify/Product/1", "gid://shopify/Product/2"],
            "gid://shopify/Collection/2": ["gid://shopify/Product/2", "gid://shopify/Product/3"],
        }
        shopify.add_discount(AUTO.format(1), basic_discount(collections=list(shopify.collections)))
        assert resolver.get_affected_products("1") == [
            "gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Product/3",
        ]

    def test_failing_collection_does_not_block_others(self, resolver, shopify):
        shopify.collections = {"gid://shopify/Collection/2": ["gid://shopify/Product/7"]}
        shopify.failing_collections.add("gid://shopify/Collection/1")
        result = resolver.get_products_from_collections(["gid://shopify/Collection/1", "gid://shopify/Collection/2"])
        assert result == ["gid://shopify/Product/7"]

    def test_not_found_yields_nothing(self, resolver):
        assert resolver.get_affected_products("12345") == []
