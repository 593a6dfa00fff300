# discount_sync/clients/shopify.py
import logging

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import API_VERSION
from ..errors import ThrottledError, UpstreamError

logger = logging.getLogger(__name__)


def admin_base(domain: str, api_version: str = API_VERSION) -> str:
    return f"https://{domain}/admin/api/{api_version}"


def rest_headers(token: str) -> dict:
    return {"Content-Type": "application/json", "X-Shopify-Access-Token": token}


# =========================================================
# GraphQL documents
# =========================================================

ITEMS_FIELDS = """
  items {
    __typename
    ... on DiscountProducts { products(first: 250) { edges { node { id } } } }
    ... on DiscountCollections { collections(first: 250) { edges { node { id } } } }
    ... on AllDiscountItems { allItems }
  }
"""

GETS_FIELDS = """
customerGets {
  value {
    __typename
    ... on DiscountAmount { amount { amount currencyCode } appliesOnEachItem }
    ... on DiscountPercentage { percentage }
    ... on DiscountOnQuantity {
      quantity { quantity }
      effect {
        __typename
        ... on DiscountPercentage { percentage }
        ... on DiscountAmount { amount { amount currencyCode } }
      }
    }
  }
""" + ITEMS_FIELDS + "}"

BUYS_FIELDS = """
customerBuys {
  value {
    __typename
    ... on DiscountQuantity { quantity }
    ... on DiscountPurchaseAmount { amount }
  }
""" + ITEMS_FIELDS + "}"

DISCOUNT_FIELDS = f"""
__typename
... on DiscountCodeBasic {{
  title summary status startsAt endsAt
  codes(first: 1) {{ edges {{ node {{ code }} }} }}
  {GETS_FIELDS}
}}
... on DiscountAutomaticBasic {{
  title summary status startsAt endsAt
  {GETS_FIELDS}
}}
... on DiscountCodeBxgy {{
  title summary status startsAt endsAt
  codes(first: 1) {{ edges {{ node {{ code }} }} }}
  {GETS_FIELDS}
  {BUYS_FIELDS}
}}
... on DiscountAutomaticBxgy {{
  title summary status startsAt endsAt
  {GETS_FIELDS}
  {BUYS_FIELDS}
}}
"""

DISCOUNT_NODE = f"""
query getDiscountNode($id: ID!) {{
  discountNode(id: $id) {{
    id
    discount {{ {DISCOUNT_FIELDS} }}
  }}
}}
"""

DISCOUNT_NODES = f"""
query getAllDiscounts($first: Int!, $after: String) {{
  discountNodes(first: $first, after: $after) {{
    edges {{ node {{ id discount {{ {DISCOUNT_FIELDS} }} }} }}
    pageInfo {{ hasNextPage endCursor }}
  }}
}}
"""

PRODUCT_IDS = """
query getAllProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges { node { id } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

COLLECTION_PRODUCT_IDS = """
query getCollectionProducts($id: ID!, $first: Int!, $after: String) {
  collection(id: $id) {
    id
    products(first: $first, after: $after) {
      edges { node { id } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

PRODUCT_METAFIELD = """
query getProductMetafield($id: ID!, $namespace: String!, $key: String!) {
  product(id: $id) {
    id
    metafield(namespace: $namespace, key: $key) { id value }
  }
}
"""

METAFIELDS_SET = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id namespace key }
    userErrors { field message code }
  }
}
"""

METAFIELD_DEFINITION_CREATE = """
mutation metafieldDefinitionCreate($definition: MetafieldDefinitionInput!) {
  metafieldDefinitionCreate(definition: $definition) {
    createdDefinition { id name namespace key }
    userErrors { field message }
  }
}
"""

TRANSIENT_STATUS = (429, 502, 503, 504)


def _connection_ids(conn: dict | None) -> tuple[list[str], bool, str | None]:
    conn = conn or {}
    ids = [e["node"]["id"] for e in (conn.get("edges") or []) if (e.get("node") or {}).get("id")]
    page = conn.get("pageInfo") or {}
    return ids, bool(page.get("hasNextPage")), page.get("endCursor")


class AdminClient:
    """Thin Admin GraphQL client for one shop.

    Every call goes through :meth:`graphql`, which retries throttling and
    gateway errors and turns everything else into :class:`UpstreamError`.
    """

    def __init__(self, shop: str, access_token: str, api_version: str = API_VERSION,
                 timeout: int = 30, session: requests.Session | None = None):
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.http = session or requests

    @property
    def graphql_url(self) -> str:
        return f"{admin_base(self.shop, self.api_version)}/graphql.json"

    @retry(
        reraise=True,
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=6),
        retry=retry_if_exception_type(ThrottledError),
    )
    def graphql(self, query: str, variables=None) -> dict:
        try:
            r = self.http.post(self.graphql_url, headers=rest_headers(self.access_token),
                               json={"query": query, "variables": variables or {}}, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"GraphQL transport failed for {self.shop}: {e}") from e

        if r.status_code in TRANSIENT_STATUS:
            logger.warning(f"[shopify] {self.shop} throttled ({r.status_code}), backing off")
            raise ThrottledError(r.text, status_code=r.status_code)
        if r.status_code >= 400:
            raise UpstreamError(f"GraphQL {r.status_code}: {r.text}", status_code=r.status_code)

        body = r.json() or {}
        errors = body.get("errors")
        if errors:
            codes = {((e or {}).get("extensions") or {}).get("code") for e in errors}
            if "THROTTLED" in codes:
                raise ThrottledError(f"THROTTLED: {errors}")
            raise UpstreamError(f"GraphQL errors: {errors}")
        return body.get("data") or {}

    # ---------------- discounts ----------------

    def fetch_discount_node(self, gid: str) -> dict | None:
        node = self.graphql(DISCOUNT_NODE, {"id": gid}).get("discountNode")
        return node or None

    def list_discount_nodes(self, first: int = 50, after: str | None = None) -> tuple[list[dict], bool, str | None]:
        conn = self.graphql(DISCOUNT_NODES, {"first": first, "after": after}).get("discountNodes") or {}
        nodes = [e["node"] for e in (conn.get("edges") or []) if e.get("node")]
        page = conn.get("pageInfo") or {}
        return nodes, bool(page.get("hasNextPage")), page.get("endCursor")

    # ---------------- products ----------------

    def list_product_ids(self, first: int = 250, after: str | None = None):
        data = self.graphql(PRODUCT_IDS, {"first": first, "after": after})
        return _connection_ids(data.get("products"))

    def list_collection_product_ids(self, collection_id: str, first: int = 250, after: str | None = None):
        data = self.graphql(COLLECTION_PRODUCT_IDS, {"id": collection_id, "first": first, "after": after})
        collection = data.get("collection")
        if not collection:
            return [], False, None
        return _connection_ids(collection.get("products"))

    # ---------------- metafields ----------------

    def get_product_metafield_value(self, product_id: str, namespace: str, key: str) -> str | None:
        data = self.graphql(PRODUCT_METAFIELD, {"id": product_id, "namespace": namespace, "key": key})
        product = data.get("product") or {}
        return (product.get("metafield") or {}).get("value")

    def set_product_metafield(self, product_id: str, namespace: str, key: str, type_: str, value: str) -> list[dict]:
        """Returns the mutation's userErrors (empty on success)."""
        data = self.graphql(METAFIELDS_SET, {"metafields": [{
            "ownerId": product_id,
            "namespace": namespace,
            "key": key,
            "type": type_,
            "value": value,
        }]})
        return (data.get("metafieldsSet") or {}).get("userErrors") or []

    def create_metafield_definition(self, definition: dict) -> dict:
        return self.graphql(METAFIELD_DEFINITION_CREATE, {"definition": definition}).get("metafieldDefinitionCreate") or {}
