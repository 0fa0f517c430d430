"""scp-style ``[service:]path`` argument parsing."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from podctl.errors import InvalidPathSpec


class Direction(Enum):
    UPLOAD = "upload"  # local -> remote
    DOWNLOAD = "download"  # remote -> local


@dataclass(frozen=True)
class PathSpec:
    """One parsed copy argument. ``service_id`` is set only when remote."""

    is_remote: bool
    path: str
    service_id: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> "PathSpec":
        """Classify a raw argument; text before the first colon names the service."""
        if ":" in raw:
            service_id, path = raw.split(":", 1)
            return cls(is_remote=True, path=path, service_id=service_id)
        return cls(is_remote=False, path=raw)


@dataclass(frozen=True)
class CopyPlan:
    """Direction plus concrete paths for one transfer."""

    direction: Direction
    service_id: str
    local_path: str
    remote_path: str


def parse_copy_args(source: str, destination: str) -> CopyPlan:
    """Turn a (source, destination) pair into a CopyPlan.

    Exactly one argument must carry a ``service:`` prefix. Paths are passed
    through unchanged.

    Raises:
        InvalidPathSpec: If neither or both arguments are remote, or the
            remote argument has an empty service identifier or path
    """
    src = PathSpec.parse(source)
    dst = PathSpec.parse(destination)

    if not src.is_remote and not dst.is_remote:
        raise InvalidPathSpec(
            f"No remote endpoint in {source!r} -> {destination!r}: prefix one path with SERVICE:"
        )
    if src.is_remote and dst.is_remote:
        raise InvalidPathSpec(
            f"Both {source!r} and {destination!r} are remote: exactly one path may carry SERVICE:"
        )

    if dst.is_remote:
        remote, local, direction = dst, src, Direction.UPLOAD
    else:
        remote, local, direction = src, dst, Direction.DOWNLOAD

    assert remote.service_id is not None
    if not remote.service_id:
        raise InvalidPathSpec(f"Empty service identifier for remote path {remote.path!r}")
    if not remote.path:
        raise InvalidPathSpec(f"Empty remote path for service {remote.service_id!r}")
    if not local.path:
        raise InvalidPathSpec("Empty local path")

    return CopyPlan(
        direction=direction,
        service_id=remote.service_id,
        local_path=local.path,
        remote_path=remote.path,
    )


__all__ = ["Direction", "PathSpec", "CopyPlan", "parse_copy_args"]
