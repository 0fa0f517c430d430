"""Shared CLI infrastructure for podctl-connect/podctl-cp/podctl-jupyter."""

import argparse
import logging
import signal
import sys

from podctl.config import HOST_KEY_POLICIES, Settings
from podctl.controlplane import ControlPlane, HTTPControlPlane
from podctl.errors import PodctlError

# Exit codes (failure kinds carry their own codes, see podctl.errors)
EXIT_OK = 0
EXIT_USAGE_ERROR = 2
EXIT_INTERRUPTED = 130

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def base_parser(description: str) -> argparse.ArgumentParser:
    """Create ArgumentParser with common flags shared by all CLI tools."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-e", "--endpoint", default=None, help="control-plane URL (default: $PODCTL_ENDPOINT)")
    parser.add_argument("--timeout", type=float, default=None, help="control-plane request timeout in seconds")
    parser.add_argument("--connect-timeout", type=float, default=None, help="SSH dial timeout in seconds")
    parser.add_argument(
        "--host-key-policy",
        choices=HOST_KEY_POLICIES,
        default=None,
        help="accept any pod host key (logged) or require a known_hosts match",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    return parser


def configure_logging(verbose: bool) -> None:
    """Log to stderr: DEBUG with -v, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
    )
    if not verbose:
        # paramiko logs every transport hiccup at INFO/ERROR
        logging.getLogger("paramiko").setLevel(logging.CRITICAL)


def make_settings(args) -> Settings:
    """Build Settings from environment, overridden by parsed args."""
    return Settings.from_env(
        endpoint=args.endpoint,
        timeout=args.timeout,
        connect_timeout=args.connect_timeout,
        host_key_policy=args.host_key_policy,
    )


def make_control_plane(settings: Settings) -> ControlPlane:
    return HTTPControlPlane(settings)


def report_error(error: PodctlError) -> int:
    """Print the failure and return its exit code."""
    print(f"Error: {error}", file=sys.stderr)
    return error.exit_code


def install_signal_handlers() -> None:
    """Turn SIGTERM/SIGHUP into SystemExit so open connections unwind and close."""

    def _handler(signum, frame):
        sys.exit(128 + signum)

    signal.signal(signal.SIGTERM, _handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _handler)
