"""
Transport strategies for the spreadsheet endpoints.

Spreadsheet script endpoints are often unreachable with a plain cross-origin
request, so each strategy below is a different way of getting one request
through:

- direct: plain request, the response must grant CORS to the client origin
- proxy: the same request relayed through a CORS relay
- no-cors: fire-and-forget, the response is opaque
- no-cache: direct plus cache-busting headers
- jsonp: callback-wrapped GET, no request body possible
- iframe: hidden-form submission answered by a correlated postMessage
- xhr: request object built and sent by hand, no CORS policy applied
"""

import asyncio
import json
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from bizflow.constants import DEFAULT_PROXY_URL, TRANSPORT_TIMEOUT_SECONDS, TransportName
from bizflow.utils.errors import TransportError
from bizflow.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SheetRequest:
    """One call to a spreadsheet endpoint"""
    url: str
    action: str
    payload: Optional[Dict[str, Any]] = None

    @property
    def method(self) -> str:
        return "POST" if self.payload is not None else "GET"


@dataclass
class SheetResponse:
    """Transport-independent response shape"""
    status_code: int
    body: Any = None
    text: str = ""
    opaque: bool = False
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.opaque or 200 <= self.status_code < 300

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "SheetResponse":
        try:
            body = response.json()
        except ValueError:
            body = None
        return cls(
            status_code=response.status_code,
            body=body,
            text=response.text,
            headers=dict(response.headers)
        )


class SheetTransport(ABC):
    """Strategy interface; one instance per call"""

    name: TransportName
    # Opaque transports never expose a response body
    opaque: bool = False

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_origin: Optional[str] = None,
        proxy_url: str = DEFAULT_PROXY_URL,
        timeout: float = TRANSPORT_TIMEOUT_SECONDS
    ):
        self.http_client = http_client
        self.client_origin = client_origin
        self.proxy_url = proxy_url
        self.timeout = timeout

    @abstractmethod
    async def send(self, request: SheetRequest) -> SheetResponse:
        """Deliver the request; raise TransportError or httpx.HTTPError on failure"""
        pass

    def _json_headers(self, request: SheetRequest) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if request.payload is not None:
            headers["Content-Type"] = "application/json"
        if self.client_origin:
            headers["Origin"] = self.client_origin
        return headers


class DirectTransport(SheetTransport):
    """Cross-origin request; fails when the endpoint does not grant CORS"""

    name = TransportName.DIRECT

    def _extra_headers(self) -> Dict[str, str]:
        return {}

    async def send(self, request: SheetRequest) -> SheetResponse:
        response = await self.http_client.request(
            request.method,
            request.url,
            params={"action": request.action},
            json=request.payload,
            headers={**self._json_headers(request), **self._extra_headers()}
        )
        self._check_cors(response)
        return SheetResponse.from_httpx(response)

    def _check_cors(self, response: httpx.Response) -> None:
        if not self.client_origin:
            return
        allowed = response.headers.get("access-control-allow-origin")
        if allowed not in ("*", self.client_origin):
            raise TransportError(
                f"CORS: endpoint did not grant access to {self.client_origin} "
                f"(Access-Control-Allow-Origin: {allowed or 'missing'})"
            )


class NoCacheTransport(DirectTransport):
    """Direct request that bypasses caches in front of the endpoint"""

    name = TransportName.NO_CACHE

    def _extra_headers(self) -> Dict[str, str]:
        return {"Cache-Control": "no-cache", "Pragma": "no-cache"}


class ProxyTransport(SheetTransport):
    """Relays the request through a public CORS relay"""

    name = TransportName.PROXY

    def relay_url(self, request: SheetRequest) -> str:
        target = httpx.URL(request.url).copy_merge_params({"action": request.action})
        return f"{self.proxy_url}{target}"

    async def send(self, request: SheetRequest) -> SheetResponse:
        headers = self._json_headers(request)
        # cors-anywhere style relays refuse requests without it
        headers["X-Requested-With"] = "XMLHttpRequest"

        response = await self.http_client.request(
            request.method,
            self.relay_url(request),
            json=request.payload,
            headers=headers
        )
        return SheetResponse.from_httpx(response)


class NoCorsTransport(SheetTransport):
    """
    Opaque request: nothing of the response can be read, so success is
    assumed whenever no network exception occurred.
    """

    name = TransportName.NO_CORS
    opaque = True

    async def send(self, request: SheetRequest) -> SheetResponse:
        # Opaque requests may only carry "simple" content types
        content = json.dumps(request.payload) if request.payload is not None else None
        headers = {"Content-Type": "text/plain;charset=UTF-8"} if content is not None else {}

        await self.http_client.request(
            request.method,
            request.url,
            params={"action": request.action},
            content=content,
            headers=headers
        )
        return SheetResponse(status_code=0, opaque=True)


class JsonpTransport(SheetTransport):
    """Callback-wrapped GET; rejects payload-carrying requests before sending"""

    name = TransportName.JSONP

    async def send(self, request: SheetRequest) -> SheetResponse:
        if request.payload is not None:
            raise TransportError(
                f"jsonp cannot carry a request body; refusing to send {request.action} without its payload"
            )

        callback = f"bizflow_jsonp_{uuid.uuid4().hex}"

        try:
            response = await asyncio.wait_for(
                self.http_client.get(
                    request.url,
                    params={"action": request.action, "callback": callback}
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise TransportError(f"jsonp callback {callback} not invoked within {self.timeout:.0f}s")
        except httpx.RequestError as e:
            raise TransportError(f"jsonp script load error: {e}")

        if not response.is_success:
            raise TransportError(f"jsonp script load error: HTTP {response.status_code}")

        body = self.parse_callback(response.text, callback)
        return SheetResponse(status_code=response.status_code, body=body, text=response.text)

    @staticmethod
    def parse_callback(script: str, callback: str) -> Any:
        """Extract the JSON argument of `callback(...)` from the returned script"""
        pattern = re.compile(
            r"^\s*(?:/\*\*/\s*)?" + re.escape(callback) + r"\s*\((.*)\)\s*;?\s*$",
            re.DOTALL
        )
        match = pattern.match(script)
        if not match:
            raise TransportError(f"jsonp script did not invoke callback {callback}")

        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise TransportError(f"jsonp callback argument is not JSON: {e}")


class IframeTransport(SheetTransport):
    """
    Hidden iframe + form emulation.

    The form is submitted form-encoded (GET without payload, POST with the
    payload JSON in a `payload` field) together with a unique iframeId. The
    target page answers with a script calling postMessage; only a message
    carrying the same iframeId resolves the call.
    """

    name = TransportName.IFRAME

    async def send(self, request: SheetRequest) -> SheetResponse:
        iframe_id = f"bizflow_iframe_{uuid.uuid4().hex}"
        form = {"iframeId": iframe_id}

        if request.payload is None:
            call = self.http_client.get(
                request.url,
                params={"action": request.action, **form}
            )
        else:
            form["payload"] = json.dumps(request.payload)
            call = self.http_client.post(
                request.url,
                params={"action": request.action},
                data=form
            )

        try:
            response = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"No message from iframe {iframe_id} within {self.timeout:.0f}s")

        if not response.is_success:
            raise TransportError(f"iframe form submission failed: HTTP {response.status_code}")

        for message in self.extract_messages(response.text):
            if isinstance(message, dict) and message.get("iframeId") == iframe_id:
                body = message.get("response")
                if body is None:
                    body = {k: v for k, v in message.items() if k != "iframeId"}
                return SheetResponse(status_code=response.status_code, body=body, text=response.text)

        raise TransportError(f"No message correlated with iframe {iframe_id}")

    @staticmethod
    def extract_messages(page: str) -> List[Any]:
        """JSON arguments of every postMessage(...) call in the page"""
        decoder = json.JSONDecoder()
        messages = []

        for match in re.finditer(r"postMessage\s*\(\s*", page):
            try:
                value, _ = decoder.raw_decode(page, match.end())
            except json.JSONDecodeError:
                continue
            # JSON.stringify'd messages arrive as a JSON string
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    continue
            messages.append(value)

        return messages


class XhrTransport(SheetTransport):
    """Request object built and sent manually, same response shape as direct"""

    name = TransportName.XHR

    async def send(self, request: SheetRequest) -> SheetResponse:
        headers = {"Accept": "application/json"}
        content = None
        if request.payload is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(request.payload)

        prepared = self.http_client.build_request(
            request.method,
            request.url,
            params={"action": request.action},
            content=content,
            headers=headers
        )
        response = await self.http_client.send(prepared)
        return SheetResponse.from_httpx(response)


TRANSPORTS = {
    TransportName.DIRECT: DirectTransport,
    TransportName.PROXY: ProxyTransport,
    TransportName.NO_CORS: NoCorsTransport,
    TransportName.NO_CACHE: NoCacheTransport,
    TransportName.JSONP: JsonpTransport,
    TransportName.IFRAME: IframeTransport,
    TransportName.XHR: XhrTransport,
}


def build_transport(name: TransportName, http_client: httpx.AsyncClient, **options) -> SheetTransport:
    """Instantiate the strategy registered under name"""
    try:
        transport_cls = TRANSPORTS[TransportName(name)]
    except ValueError:
        raise TransportError(f"Unknown transport strategy: {name}")
    return transport_cls(http_client, **options)
