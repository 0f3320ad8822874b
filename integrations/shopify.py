"""
Shopify Admin API client for the vendor store.

Walks the paginated inventory-levels endpoint (REST, Link header
cursors) and the product catalog (GraphQL, endCursor). Every request
carries a timeout; 429/5xx and network failures are retried by a
urllib3 Retry policy mounted on the session before the page is
reported failed.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.exceptions import MaxRetryError
from urllib3.util.retry import Retry

from config import settings
from exceptions import UpstreamAPIError

logger = structlog.get_logger(__name__)

# Upstream rejects larger pages
MAX_PAGE_SIZE = 250

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
    products(first: $first, after: $after) {
        edges {
            node {
                id
                handle
                title
                bodyHtml
                vendor
                productType
                status
                tags
                createdAt
                updatedAt
                variants(first: 100) {
                    edges {
                        node {
                            id
                            sku
                            barcode
                            price
                            compareAtPrice
                            position
                            inventoryItem { id }
                            selectedOptions { name value }
                        }
                    }
                }
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""


@dataclass
class UpstreamPage:
    """One page of upstream records and the cursor for the next page."""
    records: list[dict] = field(default_factory=list)
    next_cursor: Optional[str] = None


# ===================
# PARSING HELPERS
# ===================

def parse_next_cursor(link_header: Optional[str]) -> Optional[str]:
    """
    Extract page_info from the rel="next" entry of a Link header.

    Returns None when there is no next page.
    """
    if not link_header:
        return None

    for link in requests.utils.parse_header_links(link_header):
        if link.get("rel") != "next":
            continue
        query = parse_qs(urlparse(link.get("url", "")).query)
        values = query.get("page_info")
        if values:
            return values[0]
    return None


def parse_gid(gid: Any) -> Optional[int]:
    """gid://shopify/Product/123 -> 123"""
    if gid is None:
        return None
    try:
        return int(str(gid).rsplit("/", 1)[-1])
    except ValueError:
        return None


def _option_value(options: list[dict], name: str, index: int) -> Optional[str]:
    for option in options:
        if option.get("name") == name:
            return option.get("value")
    if len(options) > index:
        return options[index].get("value")
    return None


def translate_product_node(node: dict) -> dict:
    """
    Flatten a GraphQL product node into a staging record.

    Ids that cannot be parsed come through as None so the merger can
    report the record instead of dropping it silently.
    """
    product_id = parse_gid(node.get("id"))
    variants = []

    edges = (node.get("variants") or {}).get("edges") or []
    for i, edge in enumerate(edges):
        variant = edge.get("node") or {}
        options = variant.get("selectedOptions") or []
        variants.append({
            "shopify_variant_id": parse_gid(variant.get("id")),
            "shopify_product_id": product_id,
            "sku": variant.get("sku") or None,
            "barcode": variant.get("barcode"),
            "price": variant.get("price"),
            "compare_at_price": variant.get("compareAtPrice"),
            "position": variant.get("position") or i + 1,
            "inventory_item_id": parse_gid((variant.get("inventoryItem") or {}).get("id")),
            "option1": _option_value(options, "Size", 0),
            "option2": _option_value(options, "Color", 1),
            "option3": options[2].get("value") if len(options) > 2 else None,
        })

    return {
        "shopify_product_id": product_id,
        "handle": node.get("handle"),
        "title": node.get("title"),
        "vendor": node.get("vendor"),
        "product_type": node.get("productType"),
        "status": (node.get("status") or "").lower() or None,
        "tags": node.get("tags") or [],
        "variants": variants,
        "raw_payload": node,
    }


# ===================
# RETRY POLICY
# ===================

def build_retry_policy(
    max_retries: int,
    backoff_factor: float,
    max_backoff: float,
    backoff_jitter: Optional[float] = None
) -> Retry:
    """
    urllib3 retry policy for upstream calls.

    Retries connect/read failures and RETRYABLE_STATUS responses for
    every method (the GraphQL endpoint is read-only despite POST) and
    honours Retry-After. The final failing response is returned rather
    than raised so it can be classified.
    """
    return Retry(
        total=max_retries,
        connect=max_retries,
        read=max_retries,
        status=max_retries,
        other=0,
        redirect=0,
        allowed_methods=None,
        status_forcelist=sorted(RETRYABLE_STATUS),
        backoff_factor=backoff_factor,
        backoff_max=max_backoff,
        backoff_jitter=backoff_factor if backoff_jitter is None else backoff_jitter,
        respect_retry_after_header=True,
        raise_on_status=False,
    )


def build_session(retry: Retry) -> requests.Session:
    """requests session with the retry policy mounted for both schemes."""
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


# ===================
# CLIENT
# ===================

class ShopifyClient:
    """
    Upstream fetcher.

    fetch_*_page(cursor) -> UpstreamPage. A page's cursor is only known
    after the previous page returns, so callers walk pages sequentially.

    Transport retries (429/5xx, network) live in the session's
    HTTPAdapter. Payload-level failures that arrive with HTTP 200
    (GraphQL THROTTLED, a body that is not JSON) are retried here on
    the same policy's backoff schedule.
    """

    def __init__(
        self,
        store_domain: Optional[str] = None,
        admin_token: Optional[str] = None,
        location_id: Optional[str] = None,
        api_version: Optional[str] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        max_backoff_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store_domain = store_domain if store_domain is not None else settings.shopify_store_domain
        self.admin_token = admin_token if admin_token is not None else settings.shopify_admin_token
        self.location_id = location_id if location_id is not None else settings.shopify_location_id
        self.api_version = api_version or settings.shopify_api_version
        self.page_size = max(1, min(page_size or settings.sync_page_size, MAX_PAGE_SIZE))
        self.timeout = timeout if timeout is not None else settings.upstream_timeout_seconds
        self.retry_policy = build_retry_policy(
            max_retries if max_retries is not None else settings.upstream_max_retries,
            backoff_seconds if backoff_seconds is not None else settings.upstream_backoff_seconds,
            max_backoff_seconds if max_backoff_seconds is not None
            else settings.upstream_max_backoff_seconds,
        )
        self.session = session or build_session(self.retry_policy)
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    def require_credentials(self, need_location: bool = False) -> None:
        """
        Fail fast before any request when credentials are missing.

        Raises:
            UpstreamAPIError: non-retryable
        """
        missing = []
        if not self.store_domain:
            missing.append("SHOPIFY_STORE_DOMAIN")
        if not self.admin_token:
            missing.append("SHOPIFY_ADMIN_TOKEN")
        if need_location and not self.location_id:
            missing.append("SHOPIFY_LOCATION_ID")

        if missing:
            logger.error("upstream_credentials_missing", missing=missing)
            raise UpstreamAPIError(
                f"Missing upstream credentials: {', '.join(missing)}",
                retryable=False,
                details={"missing": missing}
            )

    # ===================
    # PAGES
    # ===================

    def fetch_inventory_page(self, cursor: Optional[str] = None) -> UpstreamPage:
        """
        Fetch one page of inventory levels for the configured location.

        Args:
            cursor: page_info token from the previous page, None for the first

        Returns:
            UpstreamPage with raw inventory_levels and the next cursor
        """
        self.require_credentials(need_location=True)

        params = {
            "location_ids": self.location_id,
            "limit": self.page_size,
        }
        if cursor:
            params["page_info"] = cursor

        response, payload = self._request(
            "GET",
            f"{self.base_url}/inventory_levels.json",
            params=params,
        )

        records = payload.get("inventory_levels") or []
        next_cursor = parse_next_cursor(response.headers.get("Link") or response.headers.get("link"))

        logger.debug(
            "inventory_page_fetched",
            records=len(records),
            has_next=next_cursor is not None
        )

        return UpstreamPage(records=records, next_cursor=next_cursor)

    def fetch_products_page(self, cursor: Optional[str] = None) -> UpstreamPage:
        """
        Fetch one page of products with their variants.

        Args:
            cursor: endCursor from the previous page, None for the first

        Returns:
            UpstreamPage with flattened product records and the next cursor
        """
        self.require_credentials()

        _, payload = self._request(
            "POST",
            f"{self.base_url}/graphql.json",
            json={
                "query": PRODUCTS_QUERY,
                "variables": {"first": min(self.page_size, MAX_PAGE_SIZE), "after": cursor},
            },
            payload_check=_check_graphql_errors,
        )

        products = ((payload.get("data") or {}).get("products")) or {}
        edges = products.get("edges") or []
        page_info = products.get("pageInfo") or {}

        records = [translate_product_node(edge.get("node") or {}) for edge in edges]
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None

        logger.debug(
            "products_page_fetched",
            records=len(records),
            has_next=next_cursor is not None
        )

        return UpstreamPage(records=records, next_cursor=next_cursor)

    # ===================
    # TRANSPORT
    # ===================

    def _request(
        self,
        method: str,
        url: str,
        payload_check: Optional[Callable[[dict], None]] = None,
        **kwargs
    ) -> tuple[requests.Response, dict]:
        """
        Send a request and decode its JSON body.

        Raises:
            UpstreamAPIError: fatal status or payload, or a retryable
                failure that outlived the retry policy
        """
        policy = self.retry_policy

        while True:
            response = self._send(method, url, **kwargs)
            try:
                payload = _decode_json(response)
                if payload_check:
                    payload_check(payload)
                return response, payload
            except UpstreamAPIError as e:
                if not e.retryable:
                    logger.error("upstream_payload_rejected", url=url, error=e.message)
                    raise
                try:
                    policy = policy.increment(method=method, url=url)
                except MaxRetryError:
                    logger.error(
                        "upstream_retries_exhausted",
                        url=url,
                        attempts=len(policy.history) + 1,
                        error=e.message
                    )
                    raise e

                delay = policy.get_backoff_time()
                logger.warning(
                    "upstream_request_retrying",
                    url=url,
                    attempt=len(policy.history),
                    delay_seconds=round(delay, 2),
                    error=e.message
                )
                self._sleep(delay)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {
            "X-Shopify-Access-Token": self.admin_token or "",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout,
                **kwargs
            )
        except requests.RequestException as e:
            logger.error(
                "upstream_request_failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            raise UpstreamAPIError(
                f"Upstream request failed: {e}",
                retryable=True,
                details={"error_type": type(e).__name__}
            ) from e

        if response.status_code >= 400:
            error = _error_for_status(response)
            logger.error(
                "upstream_request_failed",
                url=url,
                status=error.upstream_status,
                retryable=error.retryable,
                error=error.message
            )
            raise error
        return response


def _error_for_status(response: requests.Response) -> UpstreamAPIError:
    """Classify a non-success response."""
    status = response.status_code
    retryable = status in RETRYABLE_STATUS or status >= 500
    reason = getattr(response, "reason", "") or ""
    return UpstreamAPIError(
        f"Upstream API returned {status} {reason}".strip(),
        retryable=retryable,
        upstream_status=status
    )


def _decode_json(response: requests.Response) -> dict:
    """A maintenance page or truncated body arrives with 200 but is not JSON."""
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamAPIError(
            "Upstream returned a body that is not JSON",
            retryable=True,
            upstream_status=response.status_code,
            details={"content_type": response.headers.get("Content-Type")}
        ) from e
    return payload if isinstance(payload, dict) else {}


def _check_graphql_errors(payload: dict) -> None:
    """GraphQL reports throttling and query errors with HTTP 200."""
    errors = payload.get("errors")
    if not errors:
        return

    codes = [
        ((err.get("extensions") or {}).get("code") if isinstance(err, dict) else None)
        for err in errors
    ] if isinstance(errors, list) else []
    throttled = "THROTTLED" in codes

    raise UpstreamAPIError(
        "Upstream GraphQL query throttled" if throttled else f"Upstream GraphQL errors: {errors}",
        retryable=throttled,
        details={"codes": [c for c in codes if c]}
    )
