import json
import uuid

import pytest

from discount_sync import create_app
from discount_sync.utils.security import shopify_signature

from fakes import SHOP, basic_discount

SECRET = "whsec_test"
CRON_TOKEN = "cron-token"
AUTO = "gid://shopify/DiscountAutomaticNode/{}"
P = "gid://shopify/Product/{}"


@pytest.fixture
def app(session_factory, shopify, config):
    return create_app(
        overrides={
            "SHOPIFY_API_SECRET": SECRET,
            "CRON_SECRET_TOKEN": CRON_TOKEN,
            "WEBHOOK_INLINE": True,
            "SYNC_CONFIG": config,
            "BASE_URL": "https://sync.example.com",
            "CLIENT_FOR_SHOP": lambda shop: shopify if shop == SHOP else None,
        },
        session_factory=session_factory,
    )


@pytest.fixture
def client(app):
    return app.test_client()


def _post_webhook(client, topic, payload, shop=SHOP, secret=SECRET, webhook_id=None):
    body = json.dumps(payload).encode()
    return client.post(
        f"/webhooks/discounts/{topic}",
        data=body,
        content_type="application/json",
        headers={
            "X-Shopify-Hmac-Sha256": shopify_signature(secret, body),
            "X-Shopify-Shop-Domain": shop,
            "X-Shopify-Webhook-Id": webhook_id or str(uuid.uuid4()),
        },
    )


class TestHealth:
    def test_ok(self, client):
        assert client.get("/health").get_json() == {"ok": True}


class TestDiscountWebhooks:
    def test_bad_signature_is_rejected(self, client, shopify):
        resp = _post_webhook(client, "create", {"id": 1}, secret="wrong")
        assert resp.status_code == 401
        assert shopify.probed == []

    def test_create_runs_the_sync(self, client, shopify, mirror, repos):
        mirror(1)
        shopify.add_discount(AUTO.format(7), basic_discount(products=[P.format(1)]))
        resp = _post_webhook(client, "create", {"id": 7, "admin_graphql_api_id": AUTO.format(7)})
        assert resp.status_code == 200
        assert shopify.annotation_ids(P.format(1)) == ["7"]
        assert repos.discounts.find_by_discount_id("7").products_count == 1

    def test_delete_cleans_up(self, client, shopify, mirror):
        mirror(1)
        shopify.add_discount(AUTO.format(8), basic_discount(products=[P.format(1)]))
        _post_webhook(client, "create", {"id": 8})
        resp = _post_webhook(client, "delete", {"id": 8})
        assert resp.status_code == 200
        assert shopify.annotation_ids(P.format(1)) == []

    def test_invalid_payload(self, client):
        assert _post_webhook(client, "update", {"title": "no id"}).status_code == 400

    def test_shop_without_session_is_acknowledged(self, client, shopify):
        resp = _post_webhook(client, "create", {"id": 9}, shop="unknown.myshopify.com")
        assert resp.status_code == 200
        assert shopify.probed == []

    def test_redelivery_is_ignored(self, client, shopify, mirror):
        mirror(1)
        shopify.add_discount(AUTO.format(10), basic_discount(products=[P.format(1)]))
        webhook_id = str(uuid.uuid4())
        _post_webhook(client, "create", {"id": 10}, webhook_id=webhook_id)
        writes = len(shopify.writes)
        assert _post_webhook(client, "create", {"id": 10}, webhook_id=webhook_id).status_code == 200
        assert len(shopify.writes) == writes

    def test_worker_failure_still_acknowledges(self, client, shopify, monkeypatch):
        def explode(*a, **kw):
            raise RuntimeError("upstream exploded")
        monkeypatch.setattr(shopify, "fetch_discount_node", explode)
        assert _post_webhook(client, "create", {"id": 11}).status_code == 200


class TestCron:
    def test_cleanup_requires_bearer_token(self, client):
        assert client.post("/cron/discount-cleanup").status_code == 401
        resp = client.post("/cron/discount-cleanup", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_cleanup_returns_summary(self, client):
        resp = client.post("/cron/discount-cleanup", headers={"Authorization": f"Bearer {CRON_TOKEN}"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["totalChecked"] == 0

    def test_initialize(self, client, shopify):
        shopify.add_discount(AUTO.format(1), basic_discount())
        resp = client.post(f"/cron/initialize/{SHOP}", headers={"Authorization": f"Bearer {CRON_TOKEN}"})
        assert resp.status_code == 200
        assert resp.get_json()["processed"] == 1

    def test_initialize_unknown_shop(self, client):
        resp = client.post("/cron/initialize/nobody.myshopify.com",
                           headers={"Authorization": f"Bearer {CRON_TOKEN}"})
        assert resp.status_code == 404


class TestSetupMetafields:
    def test_definition_is_created_once(self, client, shopify):
        first = client.get(f"/setup/metafields/{SHOP}")
        assert first.status_code == 200
        assert first.get_json()["status"] == "created"
        assert shopify.definitions[0]["namespace"] == "discount_manager"
        assert shopify.definitions[0]["key"] == "active_discounts"

        second = client.get(f"/setup/metafields/{SHOP}")
        assert second.status_code == 200
        assert second.get_json()["status"] == "exists"


class TestRegisterWebhooks:
    def test_creates_missing_topics(self, client, repos, monkeypatch):
        from discount_sync.routes import register

        repos.sessions.save(SHOP, "shpat_token")
        calls = []

        class Resp:
            def __init__(self, status, body=None):
                self.status_code = status
                self._body = body or {}
                self.text = json.dumps(self._body)

            def json(self):
                return self._body

            def raise_for_status(self):
                pass

        existing = [{"id": 1, "topic": "discounts/create", "address": "https://sync.example.com/webhooks/discounts/create"},
                    {"id": 2, "topic": "discounts/update", "address": "https://old.example.com/x"}]
        monkeypatch.setattr(register.requests, "get", lambda url, **kw: Resp(200, {"webhooks": existing}))
        monkeypatch.setattr(register.requests, "put", lambda url, **kw: calls.append(("put", url)) or Resp(200))
        monkeypatch.setattr(register.requests, "post", lambda url, **kw: calls.append(("post", kw["json"])) or Resp(201))

        resp = client.get(f"/register_webhooks/{SHOP}")

        assert resp.status_code == 200
        assert resp.get_json()["webhooks"] == {
            "discounts/create": "ok",
            "discounts/update": "updated",
            "discounts/delete": "created",
        }
        assert calls[1][1]["webhook"]["address"] == "https://sync.example.com/webhooks/discounts/delete"


class TestDeliveryLog:
    def test_repeats_within_ttl_are_duplicates(self):
        from discount_sync.routes.webhooks import DeliveryLog

        now = [0.0]
        log = DeliveryLog(ttl=10, clock=lambda: now[0])
        assert log.is_duplicate("a") is False
        assert log.is_duplicate("a") is True
        now[0] = 11
        assert log.is_duplicate("a") is False

    def test_blank_ids_are_never_duplicates(self):
        from discount_sync.routes.webhooks import DeliveryLog

        log = DeliveryLog()
        assert log.is_duplicate("") is False
        assert log.is_duplicate("") is False
