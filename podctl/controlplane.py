"""
Control-plane client - the two lookups endpoint resolution depends on.

ControlPlane is the abstract collaborator; HTTPControlPlane talks JSON over
HTTP(S) to the container-service API. Every call either returns parsed
dataclasses or raises a typed PodctlError; callers never inspect status codes.

Usage:
    from podctl.config import Settings
    from podctl.controlplane import HTTPControlPlane

    with HTTPControlPlane(Settings.from_env()) as cp:
        rows = cp.describe_services("svc-123")
        entries = cp.describe_service_ssh(rows[0].zone_code, "svc-123")
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from podctl.config import Settings
from podctl.errors import CredentialIssuanceFailed, LookupFailed, PodctlError

logger = logging.getLogger(__name__)

# Application-level success code in every response envelope
RESPONSE_SUCCESS_CODE = 200

_ACTION_DESCRIBE_SERVICES = "ackcs/DescribeServices"
_ACTION_DESCRIBE_SSH = "ackcs/DescribeServicesSSH"
_ACTION_DESCRIBE_JUPYTER = "ackcs/DescribeServicesJupyter"


# ---------------------------------------------------------------------------
# Response records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceRecord:
    """One row of DescribeServices."""

    service_id: str
    zone_code: str
    status: str = ""
    service_model: str = ""
    image_id: str = ""


@dataclass(frozen=True)
class SSHEntry:
    """One-time SSH credentials: ``url`` is ``<user>@<host>:<port>``."""

    url: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class JupyterEntry:
    """Jupyter URLs published for a service."""

    urls: tuple[str, ...]


# ---------------------------------------------------------------------------
# Abstract collaborator
# ---------------------------------------------------------------------------


class ControlPlane(ABC):
    """Service-description collaborator used by EndpointResolver."""

    @abstractmethod
    def describe_services(self, service_id: str, page_size: int = 1, page_num: int = 1) -> list[ServiceRecord]:
        """Look up services filtered by identifier.

        Raises:
            LookupFailed: On transport error or non-success status
        """
        ...

    @abstractmethod
    def describe_service_ssh(self, zone_code: str, service_id: str) -> list[SSHEntry]:
        """Issue one-time SSH credentials for a service in a zone.

        Raises:
            CredentialIssuanceFailed: On transport error or non-success status
        """
        ...

    @abstractmethod
    def describe_service_jupyter(self, zone_code: str, service_id: str) -> list[JupyterEntry]:
        """Look up Jupyter URLs for a service in a zone.

        Raises:
            CredentialIssuanceFailed: On transport error or non-success status
        """
        ...

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class AccessKeyAuth(httpx.Auth):
    """Attach the access key pair to every request."""

    def __init__(self, access_key: str, secret_key: str):
        self._access_key = access_key
        self._secret_key = secret_key

    def auth_flow(self, request: httpx.Request):
        if self._access_key:
            request.headers["X-Access-Key"] = self._access_key
        if self._secret_key:
            request.headers["X-Secret-Access-Key"] = self._secret_key
        yield request


class HTTPControlPlane(ControlPlane):
    """ControlPlane over JSON/HTTP using httpx.

    Args:
        settings: Endpoint, credentials and request timeout
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self._settings = settings
        self._base_url = settings.parsed_endpoint.base_url
        self._closed = False
        self._client = httpx.Client(
            base_url=self._base_url,
            auth=AccessKeyAuth(settings.access_key, settings.secret_key),
            timeout=settings.timeout,
            transport=transport,
        )
        logger.debug("HTTPControlPlane initialized: base_url=%s, timeout=%s", self._base_url, settings.timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _call(self, action: str, body: dict[str, Any], error_cls: type[PodctlError]) -> Any:
        """POST one action and return the envelope's ``data`` member.

        Raises:
            error_cls: On HTTP, transport, decoding or application-level failure
        """
        if self._closed:
            raise RuntimeError("Control-plane client is closed")
        try:
            response = self._client.post(f"/{action}", json=body)
            response.raise_for_status()
            envelope = response.json()
        except httpx.HTTPStatusError as e:
            raise error_cls(f"{action} failed: HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise error_cls(f"{action} timed out after {self._settings.timeout}s ({self._base_url})") from e
        except httpx.TransportError as e:
            raise error_cls(f"{action} failed ({self._base_url}): {e}") from e
        except ValueError as e:
            raise error_cls(f"{action} returned invalid JSON: {e}") from e

        if not isinstance(envelope, dict):
            raise error_cls(f"{action} returned unexpected payload: {envelope!r}")
        code = envelope.get("code")
        if code != RESPONSE_SUCCESS_CODE:
            raise error_cls(f"{action} error {code}: {envelope.get('message', '')}".rstrip())
        return envelope.get("data")

    def describe_services(self, service_id: str, page_size: int = 1, page_num: int = 1) -> list[ServiceRecord]:
        body: dict[str, Any] = {"pageNum": page_num, "pageSize": page_size}
        if service_id:
            body["serviceUuid"] = service_id
        data = self._call(_ACTION_DESCRIBE_SERVICES, body, LookupFailed)
        try:
            rows = (data or {}).get("rows") or []
            return [_parse_service_row(row) for row in rows]
        except (KeyError, TypeError, AttributeError) as e:
            raise LookupFailed(f"{_ACTION_DESCRIBE_SERVICES} returned a malformed payload: {e}") from e

    def describe_service_ssh(self, zone_code: str, service_id: str) -> list[SSHEntry]:
        body = {"zoneCode": zone_code, "serviceUuids": [service_id]}
        data = self._call(_ACTION_DESCRIBE_SSH, body, CredentialIssuanceFailed)
        try:
            return [SSHEntry(url=e["url"], password=e.get("password", "")) for e in (data or {}).get("sshes") or []]
        except (KeyError, TypeError, AttributeError) as e:
            raise CredentialIssuanceFailed(f"{_ACTION_DESCRIBE_SSH} returned a malformed entry: {e}") from e

    def describe_service_jupyter(self, zone_code: str, service_id: str) -> list[JupyterEntry]:
        body = {"zoneCode": zone_code, "serviceUuids": [service_id]}
        data = self._call(_ACTION_DESCRIBE_JUPYTER, body, CredentialIssuanceFailed)
        try:
            return [JupyterEntry(urls=tuple(j.get("urls") or ())) for j in (data or {}).get("jupyters") or []]
        except (TypeError, AttributeError) as e:
            raise CredentialIssuanceFailed(f"{_ACTION_DESCRIBE_JUPYTER} returned a malformed entry: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()


def _parse_service_row(row: dict) -> ServiceRecord:
    return ServiceRecord(
        service_id=row["serviceUuid"],
        zone_code=row["zone"]["zoneCode"],
        status=row.get("serviceStatus", ""),
        service_model=(row.get("instanceType") or {}).get("serviceModel", ""),
        image_id=(row.get("image") or {}).get("imageUuid", ""),
    )


__all__ = [
    "ControlPlane",
    "HTTPControlPlane",
    "AccessKeyAuth",
    "ServiceRecord",
    "SSHEntry",
    "JupyterEntry",
    "RESPONSE_SUCCESS_CODE",
]
