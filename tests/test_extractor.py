from discount_sync.services.extractor import (
    UNTITLED, DiscountValue, ExtractedDiscountData, ValueKind,
    extract_from_full_details, extract_from_list_node, extract_from_webhook_payload,
)

from fakes import basic_discount, bxgy_discount


class TestFullDetails:
    def test_percentage_is_scaled_to_percent(self):
        data = extract_from_full_details(basic_discount(percentage=0.15), node_id="gid://shopify/DiscountAutomaticNode/7")
        assert data.id == "7"
        assert data.value.kind is ValueKind.PERCENTAGE
        assert data.value.percentage == 15
        assert data.value.display_value == "15%"
        assert data.discount_type == "automatic"
        assert data.status == "ACTIVE"

    def test_fixed_amount(self):
        data = extract_from_full_details(basic_discount(amount="10.0"), node_id="1")
        assert data.value.kind is ValueKind.FIXED_AMOUNT
        assert data.value.display_value == "10 USD"
        assert data.value.currency_code == "USD"

    def test_code_discount(self):
        d = basic_discount(typename="DiscountCodeBasic", code="SAVE10")
        data = extract_from_full_details(d, node_id="1")
        assert data.code == "SAVE10"
        assert data.discount_type == "code"

    def test_bxgy(self):
        data = extract_from_full_details(bxgy_discount(), node_id="3")
        assert data.value.kind is ValueKind.BXGY
        assert data.value.buy_quantity == 2
        assert data.value.get_quantity == 1
        assert data.value.display_value == "Buy 2, get 1 free"

    def test_status_is_uppercased(self):
        data = extract_from_full_details(basic_discount(status="expired"), node_id="1")
        assert data.status == "EXPIRED"
        assert not data.is_active


class TestTitleFallback:
    def test_blank_title_falls_back_to_code(self):
        d = basic_discount(typename="DiscountCodeBasic", title="  ", code="WELCOME")
        assert extract_from_full_details(d, node_id="1").title == "WELCOME"

    def test_blank_title_falls_back_to_value(self):
        d = basic_discount(title="", percentage=0.2)
        assert extract_from_full_details(d, node_id="1").title == "20% off"

    def test_nothing_at_all(self):
        assert extract_from_full_details({}, node_id="1").title == UNTITLED


class TestOtherShapes:
    def test_webhook_payload(self):
        payload = {
            "admin_graphql_api_id": "gid://shopify/DiscountCodeNode/11",
            "title": "Flash",
            "status": "active",
            "created_at": "2025-01-01T00:00:00Z",
        }
        data = extract_from_webhook_payload(payload)
        assert data.id == "11"
        assert data.title == "Flash"
        assert data.status == "ACTIVE"
        assert data.discount_type == "code"
        assert data.value.kind is ValueKind.UNKNOWN
        assert data.starts_at == "2025-01-01T00:00:00Z"

    def test_list_node_matches_full_details(self):
        node = {"id": "gid://shopify/DiscountAutomaticNode/5", "discount": basic_discount()}
        assert extract_from_list_node(node) == extract_from_full_details(node["discount"], node_id=node["id"])

    def test_dict_round_trip_keeps_value_kind(self):
        data = extract_from_full_details(basic_discount(amount="5"), node_id="8")
        again = ExtractedDiscountData.from_dict(data.to_dict())
        assert again.id == "8"
        assert again.value.kind is ValueKind.FIXED_AMOUNT
        assert again.value.amount == "5"

    def test_unknown_value_kind_from_dict(self):
        assert DiscountValue.from_dict({"kind": "weird"}).kind is ValueKind.UNKNOWN

    def test_annotation_carries_schema_version(self):
        entry = extract_from_full_details(basic_discount(), node_id="8").to_annotation()
        assert entry["schemaVersion"] == 1
        assert entry["id"] == "8"
        assert entry["value"]["kind"] == "percentage"
