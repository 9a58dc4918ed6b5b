"""Data Orchestrator - in-memory source of truth and fan-out point for every mutation"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

import httpx

from bizflow.constants import KIND_ORDER, EntityGroup, EntityKind, GROUP_KINDS, TransportName
from bizflow.models import (
    ENTITY_MODELS,
    Customer,
    DashboardSummary,
    Entity,
    Product,
    Session,
    Supplier,
    Transaction,
    new_entity_id
)
from bizflow.orchestrator.local_cache import LocalCache
from bizflow.orchestrator.ports import ConfirmationPort, LoggingNotifier, NotificationPort, deny_all
from bizflow.orchestrator.retry_handler import retry_with_exponential_backoff
from bizflow.tools.reconciliation_tools import merge_collections, merge_operations
from bizflow.tools.remote_store_client import RemoteStoreClient, RemoteTable
from bizflow.tools.sheet_sync_client import SheetSyncClient
from bizflow.tools.summary_tools import compute_summary
from bizflow.utils.errors import BizFlowError, LocalCacheError, SheetSyncError, TransportError
from bizflow.utils.logging import get_logger
from bizflow.utils.metrics import entity_mutations

logger = get_logger(__name__)

# Kinds that feed the dashboard summary
SUMMARY_KINDS = {EntityKind.TRANSACTIONS, EntityKind.CUSTOMERS, EntityKind.PRODUCTS}

KIND_LABELS = {
    EntityKind.TRANSACTIONS: "Transaction",
    EntityKind.CUSTOMERS: "Customer",
    EntityKind.PRODUCTS: "Product",
    EntityKind.SUPPLIERS: "Supplier",
}

RemoteCall = Callable[[RemoteTable, str], Awaitable[None]]

# Hosted backend failures reported to the user instead of raised
REMOTE_ERRORS = (BizFlowError, httpx.HTTPError, httpx.InvalidURL, RuntimeError)


class DataOrchestrator:
    """
    Owns the four collections and the derived summary.

    Writes are local-first: the in-memory collection and the local cache are
    updated synchronously, then (with an active session) the single-entity
    change is mirrored to the hosted backend in a background task. A remote
    failure becomes a warning and never rolls local state back.

    Synchronous callers (no running event loop) get their mirrors queued in
    order; `wait_for_pending()` sends them on the caller's loop.
    """

    def __init__(
        self,
        cache: LocalCache,
        sheets: SheetSyncClient,
        remote: Optional[RemoteStoreClient] = None,
        notifier: Optional[NotificationPort] = None,
        confirm: ConfirmationPort = deny_all,
        refresh_retries: int = 1,
        retry_base_delay: float = 0.5
    ):
        self.cache = cache
        self.sheets = sheets
        self.remote = remote
        self.notifier = notifier or LoggingNotifier()
        self.confirm = confirm
        self.refresh_retries = refresh_retries
        self.retry_base_delay = retry_base_delay
        self.session: Optional[Session] = None

        self._collections: Dict[EntityKind, List[Entity]] = {
            kind: self.cache.get(kind) for kind in EntityKind
        }
        self._pending: Set[asyncio.Task] = set()
        self._queued: List[Callable[[], Awaitable[None]]] = []
        self._summary = DashboardSummary()
        self._recompute_summary()
        self._load_preferences()

        logger.info(
            "Orchestrator initialized",
            **{kind.value: len(items) for kind, items in self._collections.items()}
        )

    # State access

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._collections[EntityKind.TRANSACTIONS])

    @property
    def customers(self) -> List[Customer]:
        return list(self._collections[EntityKind.CUSTOMERS])

    @property
    def products(self) -> List[Product]:
        return list(self._collections[EntityKind.PRODUCTS])

    @property
    def suppliers(self) -> List[Supplier]:
        return list(self._collections[EntityKind.SUPPLIERS])

    @property
    def dashboard_summary(self) -> DashboardSummary:
        return self._summary

    def collection(self, kind: EntityKind) -> List[Entity]:
        return list(self._collections[EntityKind(kind)])

    @property
    def has_remote_session(self) -> bool:
        return self.session is not None and self.remote is not None

    # Generic write path

    def add_entity(self, kind: EntityKind, data: Mapping[str, Any]) -> Entity:
        """
        Create an entity with a fresh id

        Raises:
            pydantic.ValidationError: If data does not describe a valid entity
        """
        kind = EntityKind(kind)
        items = self._collections[kind]
        entity = ENTITY_MODELS[kind].create(data)

        existing_ids = {item.id for item in items}
        while entity.id in existing_ids:
            entity = entity.model_copy(update={"id": new_entity_id()})

        if kind == EntityKind.TRANSACTIONS:
            entity = self._snapshot_references(entity, data)

        self._apply(kind, [*items, entity], "create", lambda table, owner: table.insert(entity, owner))
        self.notifier.success(f"{KIND_LABELS[kind]} added")
        return entity

    def update_entity(self, kind: EntityKind, entity_id: str, data: Mapping[str, Any]) -> Optional[Entity]:
        """Merge data over the entity with entity_id; None (no change) if unknown"""
        kind = EntityKind(kind)
        items = self._collections[kind]
        index = next((i for i, item in enumerate(items) if item.id == entity_id), None)

        if index is None:
            logger.warning(f"Update ignored, {kind.value} id not found", entity_id=entity_id)
            return None

        updated = items[index].merged_with(data)
        if kind == EntityKind.TRANSACTIONS:
            updated = self._snapshot_references(updated, data)

        new_items = list(items)
        new_items[index] = updated
        self._apply(kind, new_items, "update", lambda table, owner: table.update(entity_id, updated, owner))
        self.notifier.success(f"{KIND_LABELS[kind]} updated")
        return updated

    def delete_entity(self, kind: EntityKind, entity_id: str) -> bool:
        """Remove the entity with entity_id; False (no change) if unknown"""
        kind = EntityKind(kind)
        items = self._collections[kind]

        if not any(item.id == entity_id for item in items):
            logger.warning(f"Delete ignored, {kind.value} id not found", entity_id=entity_id)
            return False

        new_items = [item for item in items if item.id != entity_id]
        self._apply(kind, new_items, "delete", lambda table, owner: table.delete(entity_id, owner))
        self.notifier.success(f"{KIND_LABELS[kind]} removed")
        return True

    def _apply(self, kind: EntityKind, new_items: List[Entity], operation: str, remote_call: RemoteCall) -> None:
        # (1) in-memory state, (2) local cache, (3) remote mirror
        self._collections[kind] = new_items
        self._persist(kind)
        entity_mutations.labels(kind=kind.value, operation=operation).inc()

        if kind in SUMMARY_KINDS:
            self._recompute_summary()

        if self.has_remote_session:
            owner_id = self.session.owner_id
            self._dispatch(lambda: self._mirror(kind, operation, remote_call, owner_id))

    def _persist(self, kind: EntityKind) -> None:
        try:
            self.cache.set(kind, self._collections[kind])
        except LocalCacheError as e:
            logger.error(f"Local cache write failed: {e}", kind=kind.value)
            self.notifier.warning(f"Could not save {kind.value} on this device: {e}")

    async def _mirror(self, kind: EntityKind, operation: str, remote_call: RemoteCall, owner_id: str) -> None:
        try:
            await remote_call(self.remote.table(kind), owner_id)
            logger.info(f"Mirrored {operation} to hosted backend", kind=kind.value)
        except REMOTE_ERRORS as e:
            logger.warning(f"Hosted backend {operation} failed, local change kept: {e}", kind=kind.value)
            self.notifier.warning(
                f"{KIND_LABELS[kind]} saved locally, but the hosted backend {operation} failed: {e}"
            )

    def _dispatch(self, make_call: Callable[[], Awaitable[None]]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queued.append(make_call)
            logger.debug("No running event loop, remote call queued", queued=len(self._queued))
            return

        task = loop.create_task(make_call())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending_remote_calls(self) -> int:
        """Remote calls queued or still running"""
        return len(self._queued) + len(self._pending)

    async def wait_for_pending(self) -> None:
        """Send queued remote calls in order, then await every running one"""
        while self._queued or self._pending:
            queued, self._queued = self._queued, []
            for make_call in queued:
                await make_call()
            if self._pending:
                await asyncio.gather(*list(self._pending))

    def _snapshot_references(self, transaction: Transaction, changes: Mapping[str, Any]) -> Transaction:
        """Copy referenced customer/product names onto the transaction"""
        keys = {Transaction.field_name(key) for key in changes}
        updates: Dict[str, Any] = {}

        if "customer_id" in keys:
            if transaction.customer_id is None:
                updates["customer_name"] = None
            else:
                customer = next(
                    (c for c in self._collections[EntityKind.CUSTOMERS] if c.id == transaction.customer_id),
                    None
                )
                if customer is not None:
                    updates["customer_name"] = customer.name

        if "product_ids" in keys:
            products_by_id = {p.id: p for p in self._collections[EntityKind.PRODUCTS]}
            if all(pid in products_by_id for pid in transaction.product_ids):
                updates["product_names"] = [products_by_id[pid].name for pid in transaction.product_ids]

        return transaction.model_copy(update=updates) if updates else transaction

    def _recompute_summary(self) -> None:
        self._summary = compute_summary(
            self._collections[EntityKind.TRANSACTIONS],
            self._collections[EntityKind.CUSTOMERS],
            self._collections[EntityKind.PRODUCTS]
        )

    def _replace(self, collections: Mapping[EntityKind, List[Entity]]) -> None:
        for kind, items in collections.items():
            self._collections[kind] = list(items)
            self._persist(kind)
        self._recompute_summary()

    # Per-kind CRUD

    def add_transaction(self, data: Mapping[str, Any]) -> Transaction:
        return self.add_entity(EntityKind.TRANSACTIONS, data)

    def update_transaction(self, entity_id: str, data: Mapping[str, Any]) -> Optional[Transaction]:
        return self.update_entity(EntityKind.TRANSACTIONS, entity_id, data)

    def delete_transaction(self, entity_id: str) -> bool:
        return self.delete_entity(EntityKind.TRANSACTIONS, entity_id)

    def add_customer(self, data: Mapping[str, Any]) -> Customer:
        return self.add_entity(EntityKind.CUSTOMERS, data)

    def update_customer(self, entity_id: str, data: Mapping[str, Any]) -> Optional[Customer]:
        return self.update_entity(EntityKind.CUSTOMERS, entity_id, data)

    def delete_customer(self, entity_id: str) -> bool:
        return self.delete_entity(EntityKind.CUSTOMERS, entity_id)

    def add_product(self, data: Mapping[str, Any]) -> Product:
        return self.add_entity(EntityKind.PRODUCTS, data)

    def update_product(self, entity_id: str, data: Mapping[str, Any]) -> Optional[Product]:
        return self.update_entity(EntityKind.PRODUCTS, entity_id, data)

    def delete_product(self, entity_id: str) -> bool:
        return self.delete_entity(EntityKind.PRODUCTS, entity_id)

    def add_supplier(self, data: Mapping[str, Any]) -> Supplier:
        return self.add_entity(EntityKind.SUPPLIERS, data)

    def update_supplier(self, entity_id: str, data: Mapping[str, Any]) -> Optional[Supplier]:
        return self.update_entity(EntityKind.SUPPLIERS, entity_id, data)

    def delete_supplier(self, entity_id: str) -> bool:
        return self.delete_entity(EntityKind.SUPPLIERS, entity_id)

    # Hosted backend

    async def start_session(self, session: Session, refresh: bool = True) -> bool:
        """Activate a remote session and (by default) load the owner's data"""
        self.session = session
        if self.remote is not None and session.access_token:
            self.remote.access_token = session.access_token
        logger.info("Remote session started", owner_id=session.owner_id)
        if not refresh:
            return True
        return await self.refresh_data()

    def end_session(self) -> None:
        if self.session is not None:
            logger.info("Remote session ended", owner_id=self.session.owner_id)
        self.session = None

    async def refresh_data(self) -> bool:
        """
        Replace local state with the owner's hosted backend data.

        Kinds are fetched one after another; the first failure stops the
        refresh and kinds already replaced stay replaced.
        """
        if not self.has_remote_session:
            logger.info("Refresh skipped, no remote session")
            return False

        owner_id = self.session.owner_id

        for kind in KIND_ORDER:
            try:
                items = await retry_with_exponential_backoff(
                    self.remote.table(kind).list,
                    owner_id,
                    max_retries=self.refresh_retries,
                    base_delay=self.retry_base_delay
                )
            except BizFlowError as e:
                logger.error(f"Refresh aborted at {kind.value}: {e}")
                self.notifier.error(f"Could not load {kind.value} from the hosted backend: {e}")
                return False

            self._collections[kind] = items
            self._persist(kind)
            self._recompute_summary()

        logger.info(
            "Refresh complete",
            **{kind.value: len(items) for kind, items in self._collections.items()}
        )
        self.notifier.success("Data loaded from the hosted backend")
        return True

    async def sync_with_database(self) -> bool:
        """Upsert every local entity to the hosted backend; stops at the first failure"""
        if not self.has_remote_session:
            self.notifier.warning("Sign in to sync with the hosted backend")
            return False

        owner_id = self.session.owner_id
        pushed = 0

        try:
            for kind in KIND_ORDER:
                table = self.remote.table(kind)
                for entity in list(self._collections[kind]):
                    await table.upsert(entity, owner_id)
                    pushed += 1
        except REMOTE_ERRORS as e:
            logger.error(f"Database sync aborted after {pushed} rows: {e}")
            self.notifier.error(f"Sync with the hosted backend failed: {e}")
            return False

        logger.info("Database sync complete", rows=pushed)
        self.notifier.success("Data synced with the hosted backend")
        return True

    # Spreadsheet

    def _group_snapshot(self, group: EntityGroup) -> Dict[EntityKind, List[Entity]]:
        return {kind: list(self._collections[kind]) for kind in GROUP_KINDS[EntityGroup(group)]}

    def _report_sheet_failure(self, operation: str, group: EntityGroup, error: SheetSyncError) -> None:
        logger.error(f"Spreadsheet {operation} failed: {error}", group=group.value)
        self.notifier.error(f"Spreadsheet {operation} of {group.value} failed: {error}")

    async def export_to_sheet(self, group: EntityGroup) -> bool:
        """Overwrite the spreadsheet with the local collection(s) of group"""
        group = EntityGroup(group)
        try:
            await self.sheets.export_group(group, self._group_snapshot(group))
        except SheetSyncError as e:
            self._report_sheet_failure("export", group, e)
            return False

        self.notifier.success(f"{group.value.capitalize()} exported to the spreadsheet")
        return True

    async def import_from_sheet(self, group: EntityGroup) -> bool:
        """Add spreadsheet rows unknown locally; local entries win on conflict"""
        group = EntityGroup(group)
        try:
            imported = await self.sheets.import_group(group)
        except SheetSyncError as e:
            self._report_sheet_failure("import", group, e)
            return False

        self._replace(self._merged_with_sheet(imported))
        self.notifier.success(f"{group.value.capitalize()} imported from the spreadsheet")
        return True

    def _merged_with_sheet(self, sheet_rows: Dict[EntityKind, List[Entity]]) -> Dict[EntityKind, List[Entity]]:
        """Local collections merged with spreadsheet rows, local entries winning"""
        if EntityKind.PRODUCTS in sheet_rows:
            products, suppliers = merge_operations(
                (self._collections[EntityKind.PRODUCTS], self._collections[EntityKind.SUPPLIERS]),
                (sheet_rows[EntityKind.PRODUCTS], sheet_rows[EntityKind.SUPPLIERS])
            )
            return {EntityKind.PRODUCTS: products, EntityKind.SUPPLIERS: suppliers}

        return {
            kind: merge_collections(self._collections[kind], rows)
            for kind, rows in sheet_rows.items()
        }

    async def sync_with_sheet(self, group: EntityGroup) -> bool:
        """
        Two-sided sync of one group.

        The spreadsheet rows are read, the local collection is posted with the
        sync action (the script merges with posted rows as primary), and only
        once both succeed local state becomes merge(local, spreadsheet). With an
        opaque transport nothing can be read back, so the local collection is
        pushed and local state is left as is.
        """
        group = EntityGroup(group)

        try:
            if self.sheets.transport_is_opaque:
                await self.sheets.sync_group(group, self._group_snapshot(group))
                self.notifier.success(f"{group.value.capitalize()} pushed to the spreadsheet")
                return True

            sheet_rows = await self.sheets.import_group(group)
            await self.sheets.sync_group(group, self._group_snapshot(group))
        except SheetSyncError as e:
            self._report_sheet_failure("sync", group, e)
            return False

        self._replace(self._merged_with_sheet(sheet_rows))
        self.notifier.success(f"{group.value.capitalize()} synced with the spreadsheet")
        return True

    async def sync_all_sheets(self) -> bool:
        """Sync every group in turn; stops at the first failing group"""
        for group in EntityGroup:
            if not await self.sync_with_sheet(group):
                return False
        return True

    def set_transport(self, name: TransportName) -> None:
        """Select the spreadsheet transport and remember it on this device"""
        try:
            self.sheets.set_transport(name)
        except TransportError as e:
            self.notifier.error(str(e))
            return
        self._save_preference("transport", self.sheets.transport.value)
        self.notifier.success(f"Spreadsheet transport set to {self.sheets.transport.value}")

    def update_endpoints(self, **urls: str) -> None:
        """Change spreadsheet endpoint URLs and remember them on this device"""
        try:
            self.sheets.update_endpoints(**urls)
        except ValueError as e:
            logger.warning(f"Endpoint update rejected: {e}")
            self.notifier.error(str(e))
            return
        self._save_preference("endpoints", self.sheets.endpoints.model_dump())
        self.notifier.success("Spreadsheet endpoints updated")

    def _save_preference(self, name: str, value: Any) -> None:
        try:
            self.cache.set_preference(name, value)
        except LocalCacheError as e:
            logger.error(f"Could not persist preference {name}: {e}")
            self.notifier.warning(f"Setting applied but not saved on this device: {e}")

    def _load_preferences(self) -> None:
        transport = self.cache.get_preference("transport")
        if transport:
            try:
                self.sheets.set_transport(transport, record=False)
            except TransportError:
                logger.warning(f"Ignoring saved transport {transport!r}")

        endpoints = self.cache.get_preference("endpoints")
        if isinstance(endpoints, dict):
            try:
                self.sheets.update_endpoints(record=False, **{k: v for k, v in endpoints.items() if v})
            except ValueError as e:
                logger.warning(f"Ignoring saved endpoints: {e}")

    # Destructive

    def clear_data(self) -> bool:
        """Clear every collection after user confirmation"""
        if not self.confirm("Clear all data? This cannot be undone."):
            logger.info("Clear all data declined")
            return False

        for kind in EntityKind:
            self._collections[kind] = []

        try:
            self.cache.clear()
        except LocalCacheError as e:
            logger.error(f"Local cache clear failed: {e}")
            self.notifier.warning(f"Could not clear data stored on this device: {e}")

        self._recompute_summary()

        if self.has_remote_session:
            owner_id = self.session.owner_id
            self._dispatch(lambda: self._clear_remote(owner_id))

        self.notifier.success("All data cleared")
        return True

    async def _clear_remote(self, owner_id: str) -> None:
        failures = []
        for kind in KIND_ORDER:
            try:
                await self.remote.table(kind).delete_all(owner_id)
            except REMOTE_ERRORS as e:
                logger.error(f"Hosted backend clear failed for {kind.value}: {e}")
                failures.append(kind.value)

        if failures:
            self.notifier.error(f"Local data cleared, but the hosted backend kept: {', '.join(failures)}")
