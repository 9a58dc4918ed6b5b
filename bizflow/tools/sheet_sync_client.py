"""Spreadsheet endpoint client: export, import and sync of whole entity groups."""

import time
from collections import deque
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from bizflow.constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_PROXY_URL,
    SYNC_LOG_CAPACITY,
    TRANSPORT_TIMEOUT_SECONDS,
    EntityGroup,
    EntityKind,
    SyncStatus,
    TransportName
)
from bizflow.models import Customer, Entity, Product, Supplier, SyncLogEntry, Transaction
from bizflow.tools.sheet_transports import TRANSPORTS, SheetRequest, build_transport
from bizflow.utils.errors import ConfigurationError, SheetSyncError, TransportError
from bizflow.utils.http import LoopBoundClient
from bizflow.utils.logging import get_logger
from bizflow.utils.metrics import sheet_sync_attempts, sheet_sync_latency, sync_log_entries

logger = get_logger(__name__)

_transactions_adapter = TypeAdapter(List[Transaction])
_customers_adapter = TypeAdapter(List[Customer])
_products_adapter = TypeAdapter(List[Product])
_suppliers_adapter = TypeAdapter(List[Supplier])


class SheetEndpoints(BaseModel):
    """Script URL per entity group; empty means not configured"""

    transactions: str = Field("", description="Transactions script URL")
    customers: str = Field("", description="Customers script URL")
    operations: str = Field("", description="Products + suppliers script URL")

    @field_validator("transactions", "customers", "operations")
    @classmethod
    def check_url(cls, value: str) -> str:
        if value:
            try:
                url = httpx.URL(value)
            except httpx.InvalidURL as e:
                raise ValueError(f"invalid URL {value!r}: {e}")
            if url.scheme not in ("http", "https"):
                raise ValueError(f"URL must use http or https: {value!r}")
        return value

    def url_for(self, group: EntityGroup) -> str:
        return getattr(self, EntityGroup(group).value)


class SyncLog:
    """Append-only log of spreadsheet attempts, keeps the most recent entries"""

    def __init__(self, capacity: int = SYNC_LOG_CAPACITY):
        self._entries = deque(maxlen=capacity)

    def add(self, action: str, status: SyncStatus, details: Optional[str] = None) -> SyncLogEntry:
        entry = SyncLogEntry(action=action, status=status, details=details)
        self._entries.append(entry)
        sync_log_entries.set(len(self._entries))
        logger.info(f"{action}: {entry.status}", details=details or "No details")
        return entry

    def entries(self) -> List[SyncLogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        sync_log_entries.set(0)

    def __len__(self) -> int:
        return len(self._entries)


class SheetSyncClient:
    """
    Moves whole collections to and from the spreadsheet endpoints.

    One transport strategy is active at a time. It is read once at the start
    of each call, so switching it only affects calls made afterwards. Every
    attempt lands in `sync_log`; any failure surfaces as one SheetSyncError.
    """

    def __init__(
        self,
        endpoints: Optional[SheetEndpoints] = None,
        transport: TransportName = TransportName.DIRECT,
        http_client: Optional[httpx.AsyncClient] = None,
        client_origin: Optional[str] = None,
        proxy_url: str = DEFAULT_PROXY_URL,
        transport_timeout: float = TRANSPORT_TIMEOUT_SECONDS,
        log_capacity: int = SYNC_LOG_CAPACITY
    ):
        self.endpoints = endpoints or SheetEndpoints()
        self._transport = TransportName(transport)
        self._injected_client = http_client
        self._owned_client = LoopBoundClient(
            timeout=DEFAULT_HTTP_TIMEOUT_SECONDS,
            follow_redirects=True  # script endpoints answer through a redirect
        )
        self.client_origin = client_origin
        self.proxy_url = proxy_url
        self.transport_timeout = transport_timeout
        self.sync_log = SyncLog(log_capacity)

    @classmethod
    def from_config(cls, sheets_config: Dict[str, Any]) -> "SheetSyncClient":
        """Build from the `sheets` config section"""
        try:
            endpoints = SheetEndpoints(**(sheets_config.get('endpoints') or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid sheets.endpoints: {e.errors()[0]['msg']}") from e

        return cls(
            endpoints=endpoints,
            transport=sheets_config.get('transport', TransportName.DIRECT.value),
            client_origin=sheets_config.get('client_origin'),
            proxy_url=sheets_config.get('proxy_url', DEFAULT_PROXY_URL),
            transport_timeout=float(sheets_config.get('transport_timeout_seconds', TRANSPORT_TIMEOUT_SECONDS)),
            log_capacity=int(sheets_config.get('log_capacity', SYNC_LOG_CAPACITY))
        )

    # Configuration

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._injected_client is not None:
            return self._injected_client
        return self._owned_client.get()

    @property
    def transport(self) -> TransportName:
        return self._transport

    @property
    def transport_is_opaque(self) -> bool:
        """True when the current transport cannot read responses"""
        return TRANSPORTS[self._transport].opaque

    def set_transport(self, name: TransportName, record: bool = True) -> None:
        try:
            self._transport = TransportName(name)
        except ValueError:
            if record:
                self.sync_log.add("configuration", SyncStatus.ERROR, f"Unknown transport: {name}")
            raise TransportError(f"Unknown transport strategy: {name}")
        if record:
            self.sync_log.add("configuration", SyncStatus.SUCCESS, f"Transport set to {self._transport.value}")

    def update_endpoints(self, record: bool = True, **urls: str) -> None:
        """Replace some endpoint URLs, e.g. update_endpoints(customers="https://...")"""
        unknown = set(urls) - set(SheetEndpoints.model_fields)
        if unknown:
            raise ValueError(f"Unknown endpoint group(s): {', '.join(sorted(unknown))}")
        merged = {**self.endpoints.model_dump(), **{k: v for k, v in urls.items() if v is not None}}
        try:
            endpoints = SheetEndpoints.model_validate(merged)
        except ValidationError as e:
            if record:
                self.sync_log.add("configuration", SyncStatus.ERROR, f"Endpoint URLs rejected: {e.error_count()} errors")
            raise ValueError(f"Invalid endpoint URL: {e.errors()[0]['msg']}") from e
        self.endpoints = endpoints
        if record:
            self.sync_log.add("configuration", SyncStatus.SUCCESS, "Endpoint URLs updated")

    # Core call

    async def _call(
        self,
        label: str,
        group: EntityGroup,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        expects_data: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Send one request through the current transport and normalize the outcome

        Returns:
            Parsed response body, or None for opaque (no-cors) responses

        Raises:
            SheetSyncError: Unconfigured endpoint, transport failure, non-2xx
                status or a response without the success flag
        """
        transport_name = self._transport
        tag = f"[{transport_name.value}]"

        url = self.endpoints.url_for(group)
        if not url:
            self._fail(label, transport_name, f"Endpoint for {EntityGroup(group).value} is not configured")

        transport = build_transport(
            transport_name,
            self.http_client,
            client_origin=self.client_origin,
            proxy_url=self.proxy_url,
            timeout=self.transport_timeout
        )

        if transport.opaque and expects_data:
            self._fail(label, transport_name, f"{tag} opaque responses cannot carry {action} data")

        detail = f"{tag} {action}"
        if payload is not None:
            sizes = ", ".join(f"{len(v)} {k}" for k, v in payload.items())
            detail = f"{detail} sending {sizes}"
        self.sync_log.add(label, SyncStatus.INFO, detail)

        started = time.perf_counter()
        try:
            response = await transport.send(SheetRequest(url=url, action=action, payload=payload))
        except (TransportError, httpx.HTTPError, httpx.InvalidURL) as e:
            self._fail(label, transport_name, f"{tag} {type(e).__name__}: {e}", cause=e)
        finally:
            sheet_sync_latency.labels(transport=transport_name.value).observe(time.perf_counter() - started)

        if response.opaque:
            self._succeed(label, transport_name, f"{tag} opaque response, assuming success")
            return None

        if not response.ok:
            self._fail(label, transport_name, f"{tag} HTTP {response.status_code} - {response.text[:200]}")

        body = response.body
        if not isinstance(body, dict):
            self._fail(label, transport_name, f"{tag} response is not a JSON object")

        if not body.get("success"):
            self._fail(label, transport_name, f"{tag} script error: {body.get('error') or 'unknown error'}")

        self._succeed(label, transport_name, f"{tag} {body.get('message') or 'ok'}")
        return body

    def _succeed(self, label: str, transport_name: TransportName, detail: str) -> None:
        sheet_sync_attempts.labels(transport=transport_name.value, action=label, outcome="success").inc()
        self.sync_log.add(label, SyncStatus.SUCCESS, detail)

    def _fail(self, label: str, transport_name: TransportName, detail: str, cause: Exception = None) -> NoReturn:
        sheet_sync_attempts.labels(transport=transport_name.value, action=label, outcome="failure").inc()
        self.sync_log.add(label, SyncStatus.ERROR, detail)
        raise SheetSyncError(f"{label} failed: {detail}", action=label) from cause

    def _parse(self, label: str, adapter: TypeAdapter, rows: Any) -> List[Entity]:
        try:
            return adapter.validate_python(rows or [])
        except ValidationError as e:
            self._fail(label, self._transport, f"invalid rows from spreadsheet: {e.error_count()} errors", cause=e)

    # Transactions

    async def export_transactions(self, transactions: Sequence[Transaction]) -> None:
        await self._call(
            "export_transactions", EntityGroup.TRANSACTIONS, "exportTransactions",
            {"transactions": [t.to_wire() for t in transactions]}
        )

    async def import_transactions(self) -> List[Transaction]:
        body = await self._call(
            "import_transactions", EntityGroup.TRANSACTIONS, "importTransactions", expects_data=True
        )
        return self._parse("import_transactions", _transactions_adapter, body.get("data"))

    async def sync_transactions(self, transactions: Sequence[Transaction]) -> None:
        await self._call(
            "sync_transactions", EntityGroup.TRANSACTIONS, "syncTransactions",
            {"transactions": [t.to_wire() for t in transactions]}
        )

    # Customers

    async def export_customers(self, customers: Sequence[Customer]) -> None:
        await self._call(
            "export_customers", EntityGroup.CUSTOMERS, "exportCustomers",
            {"customers": [c.to_wire() for c in customers]}
        )

    async def import_customers(self) -> List[Customer]:
        body = await self._call(
            "import_customers", EntityGroup.CUSTOMERS, "importCustomers", expects_data=True
        )
        return self._parse("import_customers", _customers_adapter, body.get("data"))

    async def sync_customers(self, customers: Sequence[Customer]) -> None:
        await self._call(
            "sync_customers", EntityGroup.CUSTOMERS, "syncCustomers",
            {"customers": [c.to_wire() for c in customers]}
        )

    # Products + suppliers

    async def export_products(self, products: Sequence[Product]) -> None:
        await self._call(
            "export_products", EntityGroup.OPERATIONS, "exportProducts",
            {"products": [p.to_wire() for p in products]}
        )

    async def import_operations(self) -> Tuple[List[Product], List[Supplier]]:
        body = await self._call(
            "import_operations", EntityGroup.OPERATIONS, "importOperations", expects_data=True
        )
        data = body.get("data") or {}
        if not isinstance(data, dict):
            self._fail("import_operations", self._transport, "operations data is not an object")
        return (
            self._parse("import_operations", _products_adapter, data.get("products")),
            self._parse("import_operations", _suppliers_adapter, data.get("suppliers")),
        )

    async def sync_operations(self, products: Sequence[Product], suppliers: Sequence[Supplier]) -> None:
        await self._call(
            "sync_operations", EntityGroup.OPERATIONS, "syncOperations",
            {
                "products": [p.to_wire() for p in products],
                "suppliers": [s.to_wire() for s in suppliers]
            }
        )

    # Group-level dispatch used by the orchestrator

    async def export_group(self, group: EntityGroup, collections: Dict[EntityKind, Sequence[Entity]]) -> None:
        group = EntityGroup(group)
        if group == EntityGroup.TRANSACTIONS:
            await self.export_transactions(collections[EntityKind.TRANSACTIONS])
        elif group == EntityGroup.CUSTOMERS:
            await self.export_customers(collections[EntityKind.CUSTOMERS])
        else:
            await self.export_products(collections[EntityKind.PRODUCTS])

    async def import_group(self, group: EntityGroup) -> Dict[EntityKind, List[Entity]]:
        group = EntityGroup(group)
        if group == EntityGroup.TRANSACTIONS:
            return {EntityKind.TRANSACTIONS: await self.import_transactions()}
        if group == EntityGroup.CUSTOMERS:
            return {EntityKind.CUSTOMERS: await self.import_customers()}
        products, suppliers = await self.import_operations()
        return {EntityKind.PRODUCTS: products, EntityKind.SUPPLIERS: suppliers}

    async def sync_group(self, group: EntityGroup, collections: Dict[EntityKind, Sequence[Entity]]) -> None:
        group = EntityGroup(group)
        if group == EntityGroup.TRANSACTIONS:
            await self.sync_transactions(collections[EntityKind.TRANSACTIONS])
        elif group == EntityGroup.CUSTOMERS:
            await self.sync_customers(collections[EntityKind.CUSTOMERS])
        else:
            await self.sync_operations(collections[EntityKind.PRODUCTS], collections[EntityKind.SUPPLIERS])

    # Diagnostics

    async def probe_transport(
        self,
        group: EntityGroup,
        transport: Optional[TransportName] = None
    ) -> Dict[str, Any]:
        """
        Check whether a transport strategy reaches an endpoint

        Returns:
            {'success': bool, 'error': str or None}; never raises
        """
        transport_name = TransportName(transport or self._transport)
        url = self.endpoints.url_for(group)
        label = "probe_transport"

        if not url:
            error = f"Endpoint for {EntityGroup(group).value} is not configured"
            self.sync_log.add(label, SyncStatus.ERROR, error)
            return {'success': False, 'error': error}

        sender = build_transport(
            transport_name,
            self.http_client,
            client_origin=self.client_origin,
            proxy_url=self.proxy_url,
            timeout=self.transport_timeout
        )

        try:
            response = await sender.send(SheetRequest(url=url, action="ping"))
        except (TransportError, httpx.HTTPError, httpx.InvalidURL) as e:
            error = f"{type(e).__name__}: {e}"
            self.sync_log.add(label, SyncStatus.ERROR, f"[{transport_name.value}] {error}")
            return {'success': False, 'error': error}

        if not response.ok:
            error = f"Status: {response.status_code}"
            self.sync_log.add(label, SyncStatus.ERROR, f"[{transport_name.value}] {error}")
            return {'success': False, 'error': error}

        self.sync_log.add(label, SyncStatus.SUCCESS, f"[{transport_name.value}] endpoint reachable")
        return {'success': True, 'error': None}

    async def aclose(self) -> None:
        await self._owned_client.aclose()
