"""
Unit tests for VendorSyncService.

Run: pytest tests/unit/test_vendor_sync_service.py -v
"""

import threading
from unittest.mock import MagicMock

import pytest

from integrations.shopify import ShopifyClient, UpstreamPage
from services.vendor_sync_service import VendorSyncService, SyncRunRegistry
from models.sync import SyncRunStatus, SyncResource
from exceptions import UpstreamAPIError

from tests.factories import InventoryLevelFactory, VendorProductFactory


class ScriptedClient:
    """
    Upstream stand-in that serves pages by cursor.

    Each script maps a cursor (None for the first page) to an
    UpstreamPage or an exception to raise.
    """

    def __init__(self, inventory=None, products=None, missing_credentials=False):
        self.inventory = inventory or {None: UpstreamPage()}
        self.products = products or {None: UpstreamPage()}
        self.missing_credentials = missing_credentials
        self.inventory_calls = []
        self.product_calls = []
        self.on_fetch = None

    def require_credentials(self, need_location=False):
        if self.missing_credentials:
            raise UpstreamAPIError("Missing upstream credentials: SHOPIFY_ADMIN_TOKEN", retryable=False)

    def _serve(self, script, calls, cursor):
        calls.append(cursor)
        if self.on_fetch:
            self.on_fetch(len(calls))
        outcome = script[cursor]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def fetch_inventory_page(self, cursor=None):
        return self._serve(self.inventory, self.inventory_calls, cursor)

    def fetch_products_page(self, cursor=None):
        return self._serve(self.products, self.product_calls, cursor)


def make_service(fake_supabase, client):
    return VendorSyncService(db=fake_supabase, client=client, registry=SyncRunRegistry())


def levels(start, count):
    return InventoryLevelFactory.create_batch(count, start_item_id=start)


class TestInventoryWalk:
    """Tests for VendorSyncService.run_inventory_sync()"""

    def test_walk_follows_cursors_until_none(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 3), "p2"),
            "p2": UpstreamPage(levels(4, 3), "p3"),
            "p3": UpstreamPage(levels(7, 2), None),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync(triggered_by="tester")

        assert summary.status is SyncRunStatus.COMPLETED
        assert summary.resource is SyncResource.INVENTORY_LEVELS
        assert summary.pages_fetched == 3
        assert summary.records_merged == 8
        assert client.inventory_calls == [None, "p2", "p3"]
        assert len(fake_supabase.rows("vendor_inventory_levels")) == 8

        log = fake_supabase.rows("inventory_sync_log")
        assert len(log) == 1
        assert log[0]["id"] == summary.run_id
        assert log[0]["status"] == "completed"
        assert log[0]["records_merged"] == 8
        assert log[0]["triggered_by"] == "tester"

    def test_repeated_cursor_stops_walk_as_partial(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 1), "a"),
            "a": UpstreamPage(levels(2, 1), "b"),
            "b": UpstreamPage(levels(3, 1), "a"),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert summary.pages_fetched == 3
        assert client.inventory_calls == [None, "a", "b"]
        assert "cursor" in summary.error_message

    def test_cursor_equal_to_current_stops_walk(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 1), "same"),
            "same": UpstreamPage(levels(2, 1), "same"),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert client.inventory_calls == [None, "same"]

    def test_cancel_stops_before_next_page(self, fake_supabase):
        cancel = threading.Event()
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 2), "p2"),
            "p2": UpstreamPage(levels(3, 2), None),
        })
        client.on_fetch = lambda n: cancel.set() if n == 1 else None
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync(cancel_event=cancel)

        assert summary.status is SyncRunStatus.CANCELLED
        assert summary.pages_fetched == 1
        assert client.inventory_calls == [None]
        assert fake_supabase.rows("inventory_sync_log")[0]["status"] == "cancelled"

    def test_cancel_through_registry(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 1), "p2"),
            "p2": UpstreamPage(levels(2, 1), None),
        })
        service = make_service(fake_supabase, client)
        client.on_fetch = lambda n: service.cancel("run-1") if n == 1 else None

        summary = service.run_inventory_sync(run_id="run-1")

        assert summary.status is SyncRunStatus.CANCELLED
        assert service.registry.running() == []

    def test_later_page_failure_is_partial(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 2), "p2"),
            "p2": UpstreamAPIError("Upstream API returned 503", retryable=True, upstream_status=503),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert summary.pages_fetched == 1
        assert summary.failed_pages == 1
        assert summary.records_merged == 2

    def test_first_page_failure_fails_run_and_raises(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamAPIError("Upstream API returned 401", retryable=False, upstream_status=401),
        })
        service = make_service(fake_supabase, client)

        with pytest.raises(UpstreamAPIError):
            service.run_inventory_sync()

        log = fake_supabase.rows("inventory_sync_log")[0]
        assert log["status"] == "failed"
        assert "401" in log["error_message"]

    def test_first_page_failure_without_raise_returns_failed_summary(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamAPIError("Upstream API returned 503", retryable=True, upstream_status=503),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync(raise_on_fatal=False)

        assert summary.status is SyncRunStatus.FAILED
        assert summary.pages_fetched == 0

    def test_missing_credentials_fail_before_any_fetch(self, fake_supabase):
        client = ScriptedClient(missing_credentials=True)
        service = make_service(fake_supabase, client)

        with pytest.raises(UpstreamAPIError) as exc_info:
            service.run_inventory_sync()

        assert exc_info.value.retryable is False
        assert client.inventory_calls == []

    def test_persistence_failure_marks_page_failed_and_continues(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 2), "p2"),
            "p2": UpstreamPage(levels(3, 2), None),
        })
        service = make_service(fake_supabase, client)
        # Default persistence retries: 4 attempts for the first page
        fake_supabase.fail("vendor_inventory_levels", "upsert", times=4)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert summary.pages_fetched == 2
        assert summary.failed_pages == 1
        assert summary.records_merged == 2
        assert client.inventory_calls == [None, "p2"]

    def test_invalid_records_make_run_partial(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 2) + [{"location_id": 1001, "available": 1}], None),
        })
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert summary.records_merged == 2
        assert len(summary.failed_records) == 1
        assert fake_supabase.rows("inventory_sync_log")[0]["failed_records"] == 1

    def test_sync_log_failure_does_not_change_outcome(self, fake_supabase):
        client = ScriptedClient(inventory={None: UpstreamPage(levels(1, 1), None)})
        service = make_service(fake_supabase, client)
        fake_supabase.fail("inventory_sync_log", "insert", times=1)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.COMPLETED

    def test_unexpected_error_finishes_run_before_raising(self, fake_supabase):
        client = ScriptedClient(inventory={
            None: UpstreamPage(levels(1, 2), "p2"),
            "p2": ValueError("Expecting value"),
        })
        service = make_service(fake_supabase, client)

        with pytest.raises(ValueError):
            service.run_inventory_sync()

        log = fake_supabase.rows("inventory_sync_log")[0]
        assert log["status"] == "partial"
        assert log["error_message"] == "Expecting value"
        assert service.get_sync_status().is_running is False

    def test_unexpected_error_on_first_page_is_failed(self, fake_supabase):
        client = ScriptedClient(inventory={None: KeyError("inventory_levels")})
        service = make_service(fake_supabase, client)

        with pytest.raises(KeyError):
            service.run_inventory_sync()

        assert fake_supabase.rows("inventory_sync_log")[0]["status"] == "failed"

    def test_html_page_from_upstream_ends_run_partial(self, fake_supabase):
        first = MagicMock(status_code=200, reason="OK")
        first.headers = {"Link": '<https://vendor-test.myshopify.com/admin/api/2024-01/inventory_levels.json?page_info=p2>; rel="next"'}
        first.json.return_value = {"inventory_levels": levels(1, 2)}
        maintenance = MagicMock(status_code=200, reason="OK")
        maintenance.headers = {"Content-Type": "text/html"}
        maintenance.json.side_effect = ValueError("Expecting value")
        session = MagicMock()
        session.request.side_effect = [first] + [maintenance] * 3
        client = ShopifyClient(
            store_domain="vendor-test.myshopify.com",
            admin_token="shpat_test",
            location_id="1001",
            max_retries=2,
            session=session,
            sleep=lambda _: None,
        )
        service = make_service(fake_supabase, client)

        summary = service.run_inventory_sync()

        assert summary.status is SyncRunStatus.PARTIAL
        assert summary.pages_fetched == 1
        assert summary.records_merged == 2
        assert fake_supabase.rows("inventory_sync_log")[0]["status"] == "partial"


class TestProductAndFullSync:

    def test_product_sync_stages_products(self, fake_supabase):
        products = [VendorProductFactory.create(shopify_product_id=i) for i in (1, 2)]
        client = ScriptedClient(products={None: UpstreamPage(products, None)})
        service = make_service(fake_supabase, client)

        summary = service.run_product_sync()

        assert summary.status is SyncRunStatus.COMPLETED
        assert summary.records_merged == 2
        assert len(fake_supabase.rows("vendor_import_decisions")) == 2

    def test_full_sync_walks_both_resources(self, fake_supabase):
        client = ScriptedClient(
            inventory={None: UpstreamPage(levels(1, 3), None)},
            products={None: UpstreamPage([VendorProductFactory.create(shopify_product_id=9)], None)},
        )
        service = make_service(fake_supabase, client)

        summaries = service.run_full_sync(run_ids=("prod-run", "inv-run"))

        assert [s.resource for s in summaries] == [SyncResource.PRODUCTS, SyncResource.INVENTORY_LEVELS]
        assert [s.run_id for s in summaries] == ["prod-run", "inv-run"]
        assert all(s.status is SyncRunStatus.COMPLETED for s in summaries)

    def test_full_sync_failure_of_one_walk_does_not_stop_other(self, fake_supabase):
        client = ScriptedClient(
            inventory={None: UpstreamAPIError("Upstream API returned 403", retryable=False, upstream_status=403)},
            products={None: UpstreamPage([VendorProductFactory.create(shopify_product_id=9)], None)},
        )
        service = make_service(fake_supabase, client)

        products, inventory = service.run_full_sync()

        assert products.status is SyncRunStatus.COMPLETED
        assert inventory.status is SyncRunStatus.FAILED


class TestSyncStatus:

    def test_status_reports_recent_runs(self, fake_supabase):
        client = ScriptedClient(inventory={None: UpstreamPage(levels(1, 2), None)})
        service = make_service(fake_supabase, client)
        summary = service.run_inventory_sync()

        status = service.get_sync_status()

        assert status.is_running is False
        assert status.last_completed["id"] == summary.run_id
        assert status.last_failed is None
        assert len(status.recent) == 1
        assert status.inventory_health.total_items == 2

    def test_registry_cancel_unknown_run(self):
        assert SyncRunRegistry().cancel("nope") is False
