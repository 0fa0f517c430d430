"""
Testing utilities - FakeControlPlane for unit tests without network.

Example:
    from podctl.testing import FakeControlPlane
    from podctl.resolver import EndpointResolver

    fake = FakeControlPlane()
    fake.add_service("svc-123", zone_code="zone-a")
    fake.set_ssh("svc-123", url="pod@10.0.0.5:22", password="p@ss")

    descriptor = EndpointResolver(fake).resolve("svc-123")
    assert fake.calls == [("describe_services", "svc-123"), ("describe_service_ssh", "zone-a", "svc-123")]
"""

from typing import Optional

from podctl.controlplane import ControlPlane, JupyterEntry, ServiceRecord, SSHEntry
from podctl.errors import PodctlError


class FakeControlPlane(ControlPlane):
    """In-memory ControlPlane recording every call it receives."""

    def __init__(self):
        self._services: dict[str, ServiceRecord] = {}
        self._ssh: dict[str, list[SSHEntry]] = {}
        self._jupyter: dict[str, list[JupyterEntry]] = {}
        self._errors: dict[str, PodctlError] = {}
        self.calls: list[tuple] = []
        self.closed = False

    # -- configuration ------------------------------------------------------

    def add_service(
        self,
        service_id: str,
        zone_code: str,
        status: str = "Running",
        service_model: str = "",
        image_id: str = "",
    ) -> None:
        self._services[service_id] = ServiceRecord(
            service_id=service_id,
            zone_code=zone_code,
            status=status,
            service_model=service_model,
            image_id=image_id,
        )

    def set_ssh(self, service_id: str, url: str, password: str) -> None:
        self._ssh[service_id] = [SSHEntry(url=url, password=password)]

    def set_no_ssh(self, service_id: str) -> None:
        self._ssh[service_id] = []

    def set_jupyter(self, service_id: str, *urls: str) -> None:
        self._jupyter[service_id] = [JupyterEntry(urls=tuple(urls))]

    def set_error(self, method: str, error: PodctlError) -> None:
        """Make ``method`` raise ``error`` on its next and later calls."""
        self._errors[method] = error

    def reset(self) -> None:
        self._services.clear()
        self._ssh.clear()
        self._jupyter.clear()
        self._errors.clear()
        self.calls.clear()
        self.closed = False

    # -- ControlPlane -------------------------------------------------------

    def _maybe_raise(self, method: str) -> None:
        err: Optional[PodctlError] = self._errors.get(method)
        if err is not None:
            raise err

    def describe_services(self, service_id: str, page_size: int = 1, page_num: int = 1) -> list[ServiceRecord]:
        self.calls.append(("describe_services", service_id))
        self._maybe_raise("describe_services")
        if service_id:
            record = self._services.get(service_id)
            return [record] if record is not None else []
        rows = list(self._services.values())
        start = (page_num - 1) * page_size
        return rows[start : start + page_size]

    def describe_service_ssh(self, zone_code: str, service_id: str) -> list[SSHEntry]:
        self.calls.append(("describe_service_ssh", zone_code, service_id))
        self._maybe_raise("describe_service_ssh")
        return list(self._ssh.get(service_id, []))

    def describe_service_jupyter(self, zone_code: str, service_id: str) -> list[JupyterEntry]:
        self.calls.append(("describe_service_jupyter", zone_code, service_id))
        self._maybe_raise("describe_service_jupyter")
        return list(self._jupyter.get(service_id, []))

    def close(self) -> None:
        self.closed = True


__all__ = ["FakeControlPlane"]
