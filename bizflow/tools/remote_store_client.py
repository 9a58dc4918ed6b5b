"""Hosted relational backend client (PostgREST API), every call scoped to one owner."""

import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from bizflow.constants import DEFAULT_HTTP_TIMEOUT_SECONDS, EntityKind
from bizflow.models import ENTITY_MODELS, Entity
from bizflow.utils.errors import (
    ConfigurationError,
    RemoteAuthorizationError,
    RemoteStoreError,
    SessionRequiredError
)
from bizflow.utils.http import LoopBoundClient
from bizflow.utils.logging import get_logger
from bizflow.utils.metrics import remote_store_errors, remote_store_latency

logger = get_logger(__name__)


class RemoteTable:
    """CRUD over one entity kind's table"""

    def __init__(self, client: "RemoteStoreClient", kind: EntityKind):
        self.client = client
        self.kind = EntityKind(kind)
        self.model = ENTITY_MODELS[self.kind]

    async def list(self, owner_id: str) -> List[Entity]:
        """All rows owned by owner_id"""
        response = await self.client.request(
            "GET", self.kind, "list", owner_id,
            params={"select": "*"}
        )
        rows = self.client.parse_json(response, self.kind, "list")

        if not isinstance(rows, list):
            raise RemoteStoreError(f"Unexpected {self.kind.value} payload: expected a list of rows")

        try:
            return [self.model.model_validate(row) for row in rows]
        except ValidationError as e:
            remote_store_errors.labels(kind=self.kind.value, operation="list").inc()
            raise RemoteStoreError(f"Invalid {self.kind.value} row from backend: {e}")

    async def insert(self, entity: Entity, owner_id: str) -> None:
        await self.client.request(
            "POST", self.kind, "insert", owner_id,
            json=entity.to_row(owner_id),
            headers={"Prefer": "return=minimal"},
            scope_filter=False
        )

    async def update(self, entity_id: str, entity: Entity, owner_id: str) -> None:
        row = entity.to_row(owner_id)
        row.pop("id", None)
        await self.client.request(
            "PATCH", self.kind, "update", owner_id,
            params={"id": f"eq.{entity_id}"},
            json=row,
            headers={"Prefer": "return=minimal"}
        )

    async def delete(self, entity_id: str, owner_id: str) -> None:
        await self.client.request(
            "DELETE", self.kind, "delete", owner_id,
            params={"id": f"eq.{entity_id}"}
        )

    async def upsert(self, entity: Entity, owner_id: str) -> None:
        """Insert, or overwrite the row with the same id"""
        await self.client.request(
            "POST", self.kind, "upsert", owner_id,
            params={"on_conflict": "id"},
            json=entity.to_row(owner_id),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            scope_filter=False
        )

    async def delete_all(self, owner_id: str) -> None:
        """Remove every row owned by owner_id"""
        await self.client.request("DELETE", self.kind, "delete_all", owner_id)


class RemoteStoreClient:
    """
    PostgREST client for the transactions, customers, products and suppliers tables.

    The owner filter (user_id=eq.<owner>) is attached to every read, update
    and delete; inserted rows carry user_id. Row-level security on the server
    is the actual authorization boundary.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    ):
        if not base_url:
            raise ConfigurationError("Remote store URL is not configured")

        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.access_token = access_token
        self._injected_client = http_client
        self._owned_client = LoopBoundClient(timeout=timeout)
        self._tables = {kind: RemoteTable(self, kind) for kind in EntityKind}

    @classmethod
    def from_config(
        cls,
        remote_config: Dict[str, Any],
        access_token: Optional[str] = None
    ) -> Optional["RemoteStoreClient"]:
        """Build from the `remote_store` config section; None when no URL is set"""
        url = remote_config.get('url')
        if not url:
            logger.info("Remote store not configured, running local-only")
            return None

        return cls(
            base_url=url,
            api_key=remote_config.get('api_key', ''),
            access_token=access_token,
            timeout=float(remote_config.get('timeout_seconds', DEFAULT_HTTP_TIMEOUT_SECONDS))
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._injected_client is not None:
            return self._injected_client
        return self._owned_client.get()

    def table(self, kind: EntityKind) -> RemoteTable:
        return self._tables[EntityKind(kind)]

    def _headers(self) -> Dict[str, str]:
        token = self.access_token or self.api_key
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        kind: EntityKind,
        operation: str,
        owner_id: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        scope_filter: bool = True
    ) -> httpx.Response:
        """
        Send one owner-scoped request to /rest/v1/<kind>

        Raises:
            SessionRequiredError: If owner_id is empty
            RemoteAuthorizationError: On HTTP 401/403
            RemoteStoreError: On any other failure
        """
        if not owner_id:
            raise SessionRequiredError(f"Owner id required for {operation} on {kind.value}")

        query = dict(params or {})
        if scope_filter:
            query["user_id"] = f"eq.{owner_id}"

        url = f"{self.base_url}/rest/v1/{kind.value}"
        started = time.perf_counter()

        try:
            response = await self.http_client.request(
                method,
                url,
                params=query,
                json=json,
                headers={**self._headers(), **(headers or {})}
            )
        except httpx.TimeoutException as e:
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteStoreError(f"{operation} {kind.value} timed out: {e}")
        except httpx.RequestError as e:
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteStoreError(f"{operation} {kind.value} network error: {e}")
        except httpx.InvalidURL as e:
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteStoreError(f"{operation} {kind.value} invalid URL: {e}")
        finally:
            remote_store_latency.labels(operation=operation).observe(time.perf_counter() - started)

        if response.status_code in (401, 403):
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteAuthorizationError(
                f"{operation} {kind.value} not authorized (HTTP {response.status_code})",
                status_code=response.status_code
            )

        if response.status_code >= 400:
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteStoreError(
                f"{operation} {kind.value} failed: HTTP {response.status_code} - {response.text[:200]}",
                status_code=response.status_code
            )

        logger.debug(f"{operation} {kind.value} ok", status=response.status_code)
        return response

    @staticmethod
    def parse_json(response: httpx.Response, kind: EntityKind, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            remote_store_errors.labels(kind=kind.value, operation=operation).inc()
            raise RemoteStoreError(f"{operation} {kind.value} returned invalid JSON: {e}")

    async def aclose(self) -> None:
        await self._owned_client.aclose()
