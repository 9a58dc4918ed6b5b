"""Tests for the data orchestrator: local-first writes, refresh, spreadsheet sync"""

import asyncio
import json
import threading
from decimal import Decimal
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from bizflow.constants import CACHE_KEY_PREFIX, EntityGroup, EntityKind, TransportName
from bizflow.models import Customer, Session
from bizflow.orchestrator.data_orchestrator import DataOrchestrator
from bizflow.orchestrator.local_cache import LocalCache, MemoryBackend
from bizflow.tools.remote_store_client import RemoteStoreClient
from bizflow.tools.sheet_sync_client import SheetEndpoints, SheetSyncClient
from fakes import ENDPOINTS, sample_customer, sample_product, sample_supplier, sample_transaction

OWNER = "owner-1"


def customer(customer_id, name):
    return Customer(id=customer_id, name=name, email=f"{customer_id}@example.com",
                    phone="1", join_date="2024-01-01")


# Create / update / delete

def test_create_assigns_fresh_id_and_persists(orchestrator, cache):
    """Test that created entities get distinct ids and reach the cache"""
    first = orchestrator.add_customer(sample_customer())
    second = orchestrator.add_customer(sample_customer(name="Bruno"))

    assert first.id and second.id and first.id != second.id
    assert len(orchestrator.customers) == 2
    assert cache.get_customers() == orchestrator.customers


def test_create_ignores_caller_supplied_id(orchestrator):
    """Test that create replaces an id passed in by the caller"""
    created = orchestrator.add_customer(sample_customer(id="mine"))

    assert created.id != "mine"


def test_update_changes_only_supplied_fields(orchestrator):
    """Test that update merges supplied fields and keeps the id"""
    created = orchestrator.add_customer(sample_customer(notes="first"))

    updated = orchestrator.update_customer(created.id, {"phone": "22 1234-5678", "id": "hijack"})

    assert updated.id == created.id
    assert updated.phone == "22 1234-5678"
    assert updated.name == created.name
    assert updated.notes == "first"
    assert orchestrator.customers == [updated]


def test_update_unknown_id_is_a_noop(orchestrator, cache):
    """Test that updating an unknown id changes neither memory nor cache"""
    orchestrator.add_product(sample_product())
    before = orchestrator.products
    stored = cache.backend.read(f"{CACHE_KEY_PREFIX}products")

    assert orchestrator.update_product("missing", {"stock": 1}) is None
    assert orchestrator.products == before
    assert cache.backend.read(f"{CACHE_KEY_PREFIX}products") == stored


def test_delete(orchestrator):
    """Test delete of known and unknown ids"""
    keep = orchestrator.add_supplier(sample_supplier())
    drop = orchestrator.add_supplier(sample_supplier(name="Other"))

    assert orchestrator.delete_supplier("missing") is False
    assert len(orchestrator.suppliers) == 2

    assert orchestrator.delete_supplier(drop.id) is True
    assert [s.id for s in orchestrator.suppliers] == [keep.id]


def test_collections_are_copies(orchestrator):
    """Test that mutating a returned collection leaves state alone"""
    orchestrator.add_customer(sample_customer())

    orchestrator.customers.clear()

    assert len(orchestrator.customers) == 1


def test_state_is_loaded_from_cache(cache, sheets, notifier):
    """Test that a new orchestrator starts from the cached collections"""
    cache.set_customers([customer("c1", "Ana")])

    reloaded = DataOrchestrator(cache, sheets, notifier=notifier)

    assert [c.name for c in reloaded.customers] == ["Ana"]
    assert reloaded.dashboard_summary.customers_count == 1


# Denormalized name snapshots

def test_transaction_snapshots_customer_and_product_names(orchestrator):
    """Test that transactions copy the referenced customer and product names"""
    ana = orchestrator.add_customer(sample_customer())
    widget = orchestrator.add_product(sample_product())

    tx = orchestrator.add_transaction(sample_transaction(customerId=ana.id, productIds=[widget.id]))

    assert tx.customer_name == "Ana"
    assert tx.product_names == ["Widget"]


def test_snapshot_is_not_propagated_on_rename(orchestrator):
    """Test that renames do not rewrite existing transaction snapshots"""
    ana = orchestrator.add_customer(sample_customer())
    tx = orchestrator.add_transaction(sample_transaction(customerId=ana.id))

    orchestrator.update_customer(ana.id, {"name": "Ana Maria"})

    assert orchestrator.transactions[0].customer_name == "Ana"

    # Re-pointing the reference refreshes the snapshot
    orchestrator.update_transaction(tx.id, {"customerId": ana.id})
    assert orchestrator.transactions[0].customer_name == "Ana Maria"


def test_unknown_customer_reference_keeps_supplied_name(orchestrator):
    """Test that an unresolved customer reference keeps the caller's name"""
    tx = orchestrator.add_transaction(sample_transaction(customerId="ghost", customer="Walk-in"))

    assert tx.customer_name == "Walk-in"


# Summary

def test_summary_follows_mutations(orchestrator):
    """Test that the dashboard summary is recomputed after each write"""
    orchestrator.add_transaction(sample_transaction(amount=100))
    expense = orchestrator.add_transaction(sample_transaction(type="expense", amount=40, category="Supplies"))
    orchestrator.add_product(sample_product(stock=5))
    orchestrator.add_product(sample_product(name="Gadget", stock=20))

    summary = orchestrator.dashboard_summary
    assert summary.total_income == 100
    assert summary.total_expenses == 40
    assert summary.balance == 60
    assert summary.low_stock_count == 1

    orchestrator.delete_transaction(expense.id)
    assert orchestrator.dashboard_summary.balance == 100


# Local cache failures

class FailingWrites(MemoryBackend):
    def write(self, key, value):
        raise OSError("disk full")


def test_cache_write_failure_keeps_memory_state(sheets, notifier):
    """Test that a cache write failure warns and keeps the in-memory change"""
    orchestrator = DataOrchestrator(LocalCache(FailingWrites()), sheets, notifier=notifier)

    created = orchestrator.add_customer(sample_customer())

    assert orchestrator.customers == [created]
    assert "warning" in notifier.levels()


# Hosted backend mirroring

@pytest.mark.asyncio
async def test_mutations_are_mirrored_with_owner(connected, remote):
    """Test that create, update and delete reach the backend under the owner id"""
    await connected.start_session(Session(owner_id=OWNER), refresh=False)

    created = connected.add_customer(sample_customer())
    await connected.wait_for_pending()
    assert remote.rows[EntityKind.CUSTOMERS][created.id]["user_id"] == OWNER

    connected.update_customer(created.id, {"name": "Ana Maria"})
    await connected.wait_for_pending()
    assert remote.rows[EntityKind.CUSTOMERS][created.id]["name"] == "Ana Maria"

    connected.delete_customer(created.id)
    await connected.wait_for_pending()
    assert remote.rows[EntityKind.CUSTOMERS] == {}


@pytest.mark.asyncio
async def test_remote_failure_warns_and_keeps_local_change(connected, remote, notifier, cache):
    """Test that a failed remote insert warns and keeps the local entity"""
    await connected.start_session(Session(owner_id=OWNER), refresh=False)
    remote.fail_operations.add("insert")

    created = connected.add_customer(sample_customer())
    await connected.wait_for_pending()

    assert connected.customers == [created]
    assert cache.get_customers() == [created]
    assert remote.rows[EntityKind.CUSTOMERS] == {}
    assert any(level == "warning" and "hosted backend" in message for level, message in notifier.messages)


def test_without_session_nothing_is_mirrored(connected, remote):
    """Test that writes stay local while signed out"""
    connected.add_customer(sample_customer())

    assert remote.calls == []


@pytest.mark.asyncio
async def test_refresh_replaces_local_state(connected, remote, cache):
    """Test that refresh loads only the owner's rows over local state"""
    connected.add_customer(sample_customer(name="Local only"))
    remote.seed(EntityKind.CUSTOMERS, OWNER, customer("c1", "Ana"))
    remote.seed(EntityKind.CUSTOMERS, "someone-else", customer("c9", "Not mine"))

    assert await connected.start_session(Session(owner_id=OWNER)) is True

    assert [c.id for c in connected.customers] == ["c1"]
    assert [c.id for c in cache.get_customers()] == ["c1"]


@pytest.mark.asyncio
async def test_refresh_partial_failure_keeps_earlier_kinds(connected, remote, notifier):
    """Test that a refresh failure keeps kinds already replaced"""
    connected.add_product(sample_product(name="Local product"))
    remote.seed(EntityKind.CUSTOMERS, OWNER, customer("c1", "Ana"))
    remote.fail_kinds.add(EntityKind.PRODUCTS)

    assert await connected.start_session(Session(owner_id=OWNER)) is False

    assert [c.id for c in connected.customers] == ["c1"]
    assert [p.name for p in connected.products] == ["Local product"]
    assert notifier.levels()[-1] == "error"


@pytest.mark.asyncio
async def test_refresh_without_session(orchestrator):
    """Test that refresh is skipped while signed out"""
    assert await orchestrator.refresh_data() is False


@pytest.mark.asyncio
async def test_sync_with_database_upserts_everything(connected, remote):
    """Test that every local entity is upserted to the backend"""
    connected.add_customer(sample_customer())
    connected.add_transaction(sample_transaction())
    await connected.start_session(Session(owner_id=OWNER), refresh=False)

    assert await connected.sync_with_database() is True

    assert len(remote.rows[EntityKind.CUSTOMERS]) == 1
    assert len(remote.rows[EntityKind.TRANSACTIONS]) == 1


@pytest.mark.asyncio
async def test_sync_with_database_requires_session(connected, notifier):
    """Test that database sync warns while signed out"""
    assert await connected.sync_with_database() is False
    assert notifier.levels() == ["warning"]


# Spreadsheet

@pytest.mark.asyncio
async def test_sheet_sync_local_wins(cache, sheets, notifier, sheet_script):
    """Local Ana beats the stale sheet copy; Bruno is added from the sheet"""
    cache.set_customers([customer("c1", "Ana")])
    reloaded = DataOrchestrator(cache, sheets, notifier=notifier)
    sheet_script.rows["customers"] = [
        customer("c1", "Ana Stale").to_wire(),
        customer("c2", "Bruno").to_wire(),
    ]

    assert await reloaded.sync_with_sheet(EntityGroup.CUSTOMERS) is True

    assert [(c.id, c.name) for c in reloaded.customers] == [("c1", "Ana"), ("c2", "Bruno")]
    assert [(c.id, c.name) for c in cache.get_customers()] == [("c1", "Ana"), ("c2", "Bruno")]
    assert sheet_script.actions() == ["importCustomers", "syncCustomers"]


@pytest.mark.asyncio
async def test_failed_sheet_sync_leaves_state_unchanged(orchestrator, cache, sheet_script, notifier):
    """Test that a rejected sheet sync leaves memory and cache untouched"""
    orchestrator.add_customer(sample_customer())
    before = orchestrator.customers
    stored = cache.backend.read(f"{CACHE_KEY_PREFIX}customers")
    sheet_script.rows["customers"] = [customer("c2", "Bruno").to_wire()]
    sheet_script.reject_actions.add("syncCustomers")

    assert await orchestrator.sync_with_sheet(EntityGroup.CUSTOMERS) is False

    assert orchestrator.customers == before
    assert cache.backend.read(f"{CACHE_KEY_PREFIX}customers") == stored
    assert notifier.levels()[-1] == "error"


@pytest.mark.asyncio
async def test_import_adds_unknown_rows_only(orchestrator, sheet_script):
    """Test that import adds sheet-only rows and keeps local versions"""
    orchestrator.add_product(sample_product())
    local = orchestrator.products[0]
    sheet_script.rows["products"] = [
        {**local.to_wire(), "name": "Renamed in sheet"},
        {"id": "p2", "name": "Gadget", "price": 3, "category": "X", "stock": 1},
    ]
    sheet_script.rows["suppliers"] = [{"id": "s1", "name": "Acme", "phone": "1"}]

    assert await orchestrator.import_from_sheet(EntityGroup.OPERATIONS) is True

    assert [p.name for p in orchestrator.products] == ["Widget", "Gadget"]
    assert [s.id for s in orchestrator.suppliers] == ["s1"]
    assert orchestrator.dashboard_summary.low_stock_count == 1


@pytest.mark.asyncio
async def test_export_writes_local_collection(orchestrator, sheet_script):
    """Test that export overwrites the sheet with the local collection"""
    orchestrator.add_transaction(sample_transaction())

    assert await orchestrator.export_to_sheet(EntityGroup.TRANSACTIONS) is True

    assert len(sheet_script.rows["transactions"]) == 1
    assert sheet_script.rows["transactions"][0]["description"] == "Sale"


@pytest.mark.asyncio
async def test_opaque_transport_sync_only_pushes(orchestrator, sheet_script):
    """Test that sync under no-cors pushes without importing"""
    orchestrator.add_customer(sample_customer())
    orchestrator.set_transport(TransportName.NO_CORS)

    assert await orchestrator.sync_with_sheet(EntityGroup.CUSTOMERS) is True

    assert sheet_script.actions() == ["syncCustomers"]
    assert len(orchestrator.customers) == 1


@pytest.mark.asyncio
async def test_sync_all_stops_at_first_failure(orchestrator, sheet_script):
    """Test that sync-all stops at the first failing group"""
    sheet_script.fail_actions.add("importCustomers")

    assert await orchestrator.sync_all_sheets() is False

    assert "importOperations" not in sheet_script.actions()


def test_transport_choice_is_remembered(orchestrator, cache, notifier):
    """Test that the chosen transport survives a restart"""
    orchestrator.set_transport("proxy")

    reloaded = DataOrchestrator(cache, SheetSyncClient(), notifier=notifier)

    assert reloaded.sheets.transport == TransportName.PROXY


def test_unknown_transport_is_reported(orchestrator, notifier):
    """Test that an unknown transport name is reported and ignored"""
    orchestrator.set_transport("telegraph")

    assert orchestrator.sheets.transport == TransportName.DIRECT
    assert notifier.levels()[-1] == "error"


def test_endpoints_are_remembered(orchestrator, cache, notifier):
    """Test that endpoint URLs survive a restart"""
    orchestrator.update_endpoints(customers="https://new.example.com/exec")

    reloaded = DataOrchestrator(cache, SheetSyncClient(), notifier=notifier)

    assert reloaded.sheets.endpoints.customers == "https://new.example.com/exec"


# Clear all

def test_clear_requires_confirmation(orchestrator, cache):
    """Test that clear does nothing without confirmation"""
    orchestrator.add_customer(sample_customer())

    assert orchestrator.clear_data() is False
    assert len(orchestrator.customers) == 1


@pytest.mark.asyncio
async def test_clear_wipes_local_and_remote(cache, sheets, notifier, remote):
    """Test that a confirmed clear empties local and hosted data but keeps preferences"""
    prompts = []

    def confirm(prompt):
        prompts.append(prompt)
        return True

    orchestrator = DataOrchestrator(cache, sheets, remote=remote, notifier=notifier, confirm=confirm)
    await orchestrator.start_session(Session(owner_id=OWNER), refresh=False)
    orchestrator.add_customer(sample_customer())
    orchestrator.set_transport("xhr")
    await orchestrator.wait_for_pending()

    assert orchestrator.clear_data() is True
    await orchestrator.wait_for_pending()

    assert prompts
    assert orchestrator.customers == []
    assert cache.get_customers() == []
    assert cache.get_preference("transport") == "xhr"
    assert remote.rows[EntityKind.CUSTOMERS] == {}
    assert orchestrator.dashboard_summary.customers_count == 0


@pytest.mark.asyncio
async def test_clear_with_remote_failure_reports_one_error(cache, sheets, notifier, remote):
    """Local data stays cleared when the hosted backend refuses delete_all"""
    orchestrator = DataOrchestrator(cache, sheets, remote=remote, notifier=notifier, confirm=lambda prompt: True)
    await orchestrator.start_session(Session(owner_id=OWNER), refresh=False)
    created = orchestrator.add_customer(sample_customer())
    await orchestrator.wait_for_pending()
    remote.fail_operations.add("delete_all")

    assert orchestrator.clear_data() is True
    await orchestrator.wait_for_pending()

    assert orchestrator.customers == []
    assert cache.get_customers() == []
    assert list(remote.rows[EntityKind.CUSTOMERS]) == [created.id]
    assert notifier.levels().count("error") == 1
    assert "customers" in notifier.messages[-1][1]


# Hosted backend failures

@pytest.mark.asyncio
async def test_sync_with_database_stops_at_first_failure(connected, remote, notifier):
    """One failed upsert aborts the rest and reports a single error"""
    connected.add_customer(sample_customer())
    connected.add_customer(sample_customer(name="Bruno"))
    connected.add_product(sample_product())
    await connected.start_session(Session(owner_id=OWNER), refresh=False)
    remote.fail_operations.add("upsert")

    assert await connected.sync_with_database() is False

    assert [call for call in remote.calls if call[0] == "upsert"] == [("upsert", EntityKind.CUSTOMERS)]
    assert notifier.levels().count("error") == 1


@pytest.mark.asyncio
async def test_remote_update_failure_warns_and_keeps_local_change(connected, remote, notifier, cache):
    """A failed remote update leaves the local edit in place with one warning"""
    await connected.start_session(Session(owner_id=OWNER), refresh=False)
    created = connected.add_customer(sample_customer())
    await connected.wait_for_pending()
    remote.fail_operations.add("update")

    connected.update_customer(created.id, {"name": "Ana Maria"})
    await connected.wait_for_pending()

    assert [c.name for c in connected.customers] == ["Ana Maria"]
    assert [c.name for c in cache.get_customers()] == ["Ana Maria"]
    assert remote.rows[EntityKind.CUSTOMERS][created.id]["name"] == "Ana"
    assert notifier.levels().count("warning") == 1


@pytest.mark.asyncio
async def test_remote_delete_failure_warns_and_keeps_local_change(connected, remote, notifier, cache):
    """A failed remote delete still removes the entity locally with one warning"""
    await connected.start_session(Session(owner_id=OWNER), refresh=False)
    created = connected.add_customer(sample_customer())
    await connected.wait_for_pending()
    remote.fail_operations.add("delete")

    assert connected.delete_customer(created.id) is True
    await connected.wait_for_pending()

    assert connected.customers == []
    assert cache.get_customers() == []
    assert created.id in remote.rows[EntityKind.CUSTOMERS]
    assert notifier.levels().count("warning") == 1


def test_mirrors_without_event_loop_are_queued(connected, remote):
    """Plain synchronous callers queue mirrors until wait_for_pending runs"""
    asyncio.run(connected.start_session(Session(owner_id=OWNER), refresh=False))

    first = connected.add_customer(sample_customer())
    second = connected.add_customer(sample_customer(name="Bruno"))

    assert remote.calls == []
    assert connected.pending_remote_calls == 2

    asyncio.run(connected.wait_for_pending())

    assert list(remote.rows[EntityKind.CUSTOMERS]) == [first.id, second.id]
    assert connected.pending_remote_calls == 0


def test_queued_mirror_failure_is_a_warning(connected, remote, notifier):
    """A queued mirror that fails warns instead of raising"""
    asyncio.run(connected.start_session(Session(owner_id=OWNER), refresh=False))
    remote.fail_operations.add("insert")

    created = connected.add_customer(sample_customer())
    asyncio.run(connected.wait_for_pending())

    assert connected.customers == [created]
    assert notifier.levels()[-1] == "warning"


class PostgrestHandler(BaseHTTPRequestHandler):
    """Accepts every insert and records the posted row"""

    protocol_version = "HTTP/1.1"

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        self.server.received.append(json.loads(self.rfile.read(length)))
        self.send_response(201)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def postgrest_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), PostgrestHandler)
    server.received = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def test_synchronous_mirrors_reach_live_backend(cache, sheets, notifier, postgrest_server):
    """Inserts from code without an event loop survive several flushes over real sockets"""
    host, port = postgrest_server.server_address
    remote = RemoteStoreClient(base_url=f"http://{host}:{port}", api_key="anon-key")
    orchestrator = DataOrchestrator(cache, sheets, remote=remote, notifier=notifier)
    orchestrator.session = Session(owner_id=OWNER)

    orchestrator.add_customer(sample_customer(name="Ana"))
    orchestrator.add_customer(sample_customer(name="Bruno"))
    asyncio.run(orchestrator.wait_for_pending())

    orchestrator.add_customer(sample_customer(name="Carla"))
    asyncio.run(orchestrator.wait_for_pending())

    assert [row["name"] for row in postgrest_server.received] == ["Ana", "Bruno", "Carla"]
    assert {row["user_id"] for row in postgrest_server.received} == {OWNER}
    assert "warning" not in notifier.levels()


# Spreadsheet endpoint validation

def test_invalid_endpoint_url_is_reported(orchestrator, notifier, cache):
    """A malformed URL is refused with one error and is not saved"""
    orchestrator.update_endpoints(customers="http://[::1")

    assert orchestrator.sheets.endpoints.customers == ENDPOINTS.customers
    assert notifier.levels() == ["error"]
    assert cache.get_preference("endpoints") is None


def test_saved_malformed_endpoints_are_ignored(cache, notifier):
    """A bad URL left in preferences does not stop the orchestrator from loading"""
    cache.set_preference("endpoints", {"customers": "http://[::1"})

    reloaded = DataOrchestrator(cache, SheetSyncClient(endpoints=ENDPOINTS), notifier=notifier)

    assert reloaded.sheets.endpoints.customers == ENDPOINTS.customers


@pytest.mark.asyncio
async def test_export_to_malformed_url_fails_cleanly(orchestrator, notifier):
    """Export through a URL httpx cannot parse returns False with one error"""
    orchestrator.add_customer(sample_customer())
    orchestrator.sheets.endpoints = SheetEndpoints.model_construct(
        transactions="", customers="http://[::1", operations=""
    )
    orchestrator.set_transport("proxy")

    assert await orchestrator.export_to_sheet(EntityGroup.CUSTOMERS) is False
    assert notifier.levels().count("error") == 1


@pytest.mark.asyncio
async def test_operations_sync_merges_products_and_suppliers(orchestrator, sheet_script):
    """Local products win and sheet-only suppliers are added in one operations sync"""
    product = orchestrator.add_product(sample_product())
    sheet_script.rows["products"] = [{**product.to_wire(), "name": "Sheet name"}]
    sheet_script.rows["suppliers"] = [{"id": "s1", "name": "Acme", "phone": "1"}]

    assert await orchestrator.sync_with_sheet(EntityGroup.OPERATIONS) is True

    assert [p.name for p in orchestrator.products] == ["Widget"]
    assert [s.id for s in orchestrator.suppliers] == ["s1"]
    assert sheet_script.actions() == ["importOperations", "syncOperations"]
    assert [row["name"] for row in sheet_script.rows["products"]] == ["Widget"]


# Money precision

def test_large_amount_survives_cache_roundtrip(orchestrator, cache):
    """A 19-digit amount reads back from the cache unchanged"""
    created = orchestrator.add_transaction(sample_transaction(amount=Decimal("12345678901234567.89")))

    assert cache.get_transactions() == orchestrator.transactions == [created]
    assert cache.get_transactions()[0].amount == Decimal("12345678901234567.89")
