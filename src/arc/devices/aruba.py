"""Aruba AOS-Switch handler (REST API v1).

Sessions are cookie based. A cookie persisted by a previous run is reused
when the switch still accepts it; otherwise the handler logs in again via
`login-sessions` and stores the new cookie. Every operation maps to exactly
one request (see aruba_codec).
"""
import logging
from typing import Any, Optional

import httpx

from ..config.schema import ConfigEntity, EntityKind
from ..config.sessions import SessionStore
from ..config.settings import ReconcileSettings
from ..config_engine.schema import Operation, OpType
from ..errors import DeviceError, NotAuthenticated, TransientDeviceError
from ..utils.connection import async_retrying
from ..utils.logging_config import timed
from . import aruba_codec
from .aruba_codec import COLLECTION_KEYS, CodecError
from .base import DeviceConfig, NetworkDevice

logger = logging.getLogger(__name__)

# Statuses worth retrying: the request never took effect
TRANSIENT_STATUS = {408, 429, 502, 503, 504}

# Status of a rejected session cookie on AOS-Switch
SESSION_REJECTED_STATUS = {400, 401}

RESOURCES = {
    EntityKind.VLAN: "vlans",
    EntityKind.INTERFACE: "ports",
    EntityKind.VLAN_PORT: "vlans-ports",
    EntityKind.POE: "poe/ports",
    EntityKind.ACL: "acls",
    EntityKind.STATIC_ROUTE: "ip-route",
}


def _error_message(resp: httpx.Response) -> str:
    """Best-effort error text from an AOS-Switch error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200].strip() or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class ArubaDevice(NetworkDevice):
    """Aruba AOS-Switch handler using the REST API."""

    supports_transactions = False

    def __init__(
        self,
        device_id: str,
        config: DeviceConfig,
        settings: Optional[ReconcileSettings] = None,
        sessions: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(device_id, config, settings)
        self.sessions = sessions
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._cookie: Optional[str] = None
        self._acl_ids: dict[str, str] = {}

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(
                self.settings.request_timeout,
                connect=self.settings.connect_timeout,
            ),
            verify=self.config.verify_ssl,
            transport=self._transport,
        )

    def _use_cookie(self, cookie: str) -> None:
        self._cookie = cookie
        if self._http is not None:
            self._http.headers["Cookie"] = cookie

    async def connect(self) -> bool:
        """Open the HTTP client and make sure the session is valid.

        A busy or unreachable switch is retried within the run's retry budget.
        """
        logger.info(f"Connecting to Aruba {self.device_id} at {self.config.base_url}")
        if self._http is None:
            self._http = self._new_client()

        async for attempt in async_retrying(self.settings):
            with attempt:
                await self._open_session()
        self._connected = True
        return True

    async def _open_session(self) -> None:
        cookie = self.sessions.load(self.device_id) if self.sessions else None
        if cookie:
            self._use_cookie(cookie)
            if await self._session_valid():
                logger.debug(f"Reusing stored session for {self.device_id}")
                return
            logger.info(f"Stored session for {self.device_id} was rejected, logging in again")

        await self.login()

    async def _session_valid(self) -> bool:
        """Probe the session with a cheap read of the default VLAN."""
        resp = await self._send("GET", "vlans/1", check_auth=False)
        if resp.status_code in SESSION_REJECTED_STATUS:
            return False
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientDeviceError(f"{self.device_id}: probe returned {resp.status_code}")
        return True

    @timed("login")
    async def login(self) -> str:
        """Create a new session and persist its cookie.

        Returns:
            The session cookie

        Raises:
            NotAuthenticated: If the switch rejects the credentials
        """
        if self._http is None:
            self._http = self._new_client()
        self._http.headers.pop("Cookie", None)

        resp = await self._send(
            "POST",
            "login-sessions",
            {"userName": self.config.username, "password": self.config.get_password()},
            check_auth=False,
        )
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientDeviceError(f"{self.device_id}: login returned {resp.status_code}")
        if not resp.is_success:
            raise NotAuthenticated(
                f"{self.device_id}: login rejected ({resp.status_code}): {_error_message(resp)}"
            )
        try:
            cookie = resp.json()["cookie"]
        except (ValueError, KeyError, TypeError) as e:
            raise DeviceError(f"{self.device_id}: malformed login response") from e

        self._use_cookie(cookie)
        if self.sessions:
            self.sessions.save(self.device_id, cookie)
        logger.info(f"Logged in to {self.device_id} as {self.config.username}")
        return cookie

    async def logout(self) -> None:
        """Delete the session on the switch and forget the stored cookie."""
        cookie = self._cookie or (self.sessions.load(self.device_id) if self.sessions else None)
        if cookie:
            if self._http is None:
                self._http = self._new_client()
            self._use_cookie(cookie)
            resp = await self._send("DELETE", "login-sessions", check_auth=False)
            if not resp.is_success and resp.status_code not in SESSION_REJECTED_STATUS:
                logger.warning(f"Logout from {self.device_id} returned {resp.status_code}")
        if self.sessions:
            self.sessions.forget(self.device_id)
        self._cookie = None
        logger.info(f"Logged out of {self.device_id}")

    async def disconnect(self) -> None:
        """Close the HTTP client. The session stays valid for the next run."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self._connected = False
        logger.info(f"Disconnected from {self.device_id}")

    async def _send(
        self, method: str, path: str, body: Optional[dict] = None, check_auth: bool = True
    ) -> httpx.Response:
        """Send one request, mapping transport failures to device errors."""
        if self._http is None:
            raise DeviceError(f"{self.device_id}: not connected")
        try:
            resp = await self._http.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise TransientDeviceError(f"{self.device_id}: {method} {path} timed out") from e
        except httpx.TransportError as e:
            raise TransientDeviceError(f"{self.device_id}: {method} {path} failed: {e}") from e

        logger.debug(f"{self.device_id}: {method} {path} -> {resp.status_code}")
        if check_auth and resp.status_code == 401:
            raise NotAuthenticated(f"{self.device_id}: session expired")
        return resp

    async def _get(self, path: str) -> Any:
        resp = await self._send("GET", path)
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientDeviceError(f"{self.device_id}: GET {path} returned {resp.status_code}")
        if not resp.is_success:
            raise DeviceError(
                f"{self.device_id}: GET {path} returned {resp.status_code}: {_error_message(resp)}"
            )
        try:
            return resp.json()
        except ValueError as e:
            raise DeviceError(f"{self.device_id}: GET {path} returned invalid JSON") from e

    async def _get_collection(self, path: str, key: str) -> list[dict]:
        data = await self._get(path)
        return list(data.get(key) or []) if isinstance(data, dict) else []

    # --- State retrieval ---

    async def _fetch_acls(self) -> list[dict]:
        records = await self._get_collection("acls", COLLECTION_KEYS["acls"])
        self._acl_ids = {r["name"]: r["id"] for r in records if "name" in r and "id" in r}
        return records

    async def fetch(self, kind: EntityKind) -> list[dict]:
        kind = EntityKind(kind)
        if kind == EntityKind.ACL:
            return await self._fetch_acls()
        if kind == EntityKind.ACL_RULE:
            records = []
            for acl in await self._fetch_acls():
                if acl.get("acl_type") not in aruba_codec.ACL_TYPES.values():
                    continue
                rules = await self._get_collection(
                    f"acls/{acl['id']}/rules", COLLECTION_KEYS["rules"]
                )
                records.extend({**rule, "acl_name": acl["name"]} for rule in rules)
            return records

        resource = RESOURCES[kind]
        return await self._get_collection(resource, COLLECTION_KEYS[resource])

    def normalize(self, kind: EntityKind, records: list[dict]) -> list[ConfigEntity]:
        try:
            return aruba_codec.normalize(kind, records)
        except CodecError as e:
            raise DeviceError(f"{self.device_id}: {e}") from e

    # --- Configuration modification ---

    async def apply_operation(self, operation: Operation) -> tuple[bool, str]:
        try:
            request = aruba_codec.build_request(operation, self._acl_ids)
        except ValueError as e:
            return False, str(e)

        resp = await self._send(request.method, request.path, request.body)
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientDeviceError(
                f"{self.device_id}: {request.method} {request.path} returned {resp.status_code}"
            )

        if resp.is_success or (resp.status_code == 404 and operation.op_type == OpType.DELETE):
            self._track_acl(operation, resp)
            if not resp.is_success:
                return True, f"{operation.ref} already absent"
            return True, f"{request.method} {request.path}: {resp.status_code}"

        return False, f"{request.method} {request.path} rejected ({resp.status_code}): {_error_message(resp)}"

    def _track_acl(self, operation: Operation, resp: httpx.Response) -> None:
        """Keep ACL name -> device id current so rule paths resolve."""
        if operation.kind != EntityKind.ACL:
            return
        if operation.op_type == OpType.DELETE:
            self._acl_ids.pop(operation.identifier, None)
            return
        if operation.op_type == OpType.CREATE:
            acl_type = operation.changes.get("type", "standard")
            try:
                created_id = resp.json().get("id")
            except (ValueError, AttributeError):
                created_id = None
            self._acl_ids[operation.identifier] = created_id or aruba_codec.acl_id(
                operation.identifier, acl_type
            )

    # --- PoE helpers ---

    async def get_poe_ports(self) -> list[dict]:
        """Get the PoE settings of every port."""
        return await self._get_collection("poe/ports", COLLECTION_KEYS["poe/ports"])

    async def get_poe_port(self, port_id: str) -> dict:
        """Get the PoE settings of one port."""
        return await self._get(f"ports/{port_id}/poe")

    async def set_poe_port(self, port_id: str, data: dict) -> dict:
        """Write raw PoE settings of one port and return the new settings.

        Raises:
            DeviceError: If the switch rejects the settings
        """
        resp = await self._send("PUT", f"ports/{port_id}/poe", data)
        if resp.status_code in TRANSIENT_STATUS:
            raise TransientDeviceError(f"{self.device_id}: PUT ports/{port_id}/poe returned {resp.status_code}")
        if not resp.is_success:
            raise DeviceError(
                f"{self.device_id}: port {port_id} PoE rejected ({resp.status_code}): {_error_message(resp)}"
            )
        return resp.json()
