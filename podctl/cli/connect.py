"""podctl-connect / podssh -- Open an interactive shell on a service."""

import sys

from podctl.cli._common import (
    EXIT_INTERRUPTED,
    EXIT_USAGE_ERROR,
    base_parser,
    configure_logging,
    install_signal_handlers,
    make_control_plane,
    make_settings,
    report_error,
)
from podctl.errors import PodctlError
from podctl.resolver import EndpointResolver
from podctl.session import open_interactive


def main() -> int:
    parser = base_parser("Open an interactive shell on a service")
    parser.add_argument("service", metavar="SERVICE", help="service identifier")
    args = parser.parse_args()
    configure_logging(args.verbose)

    if not args.service.strip():
        print("Error: SERVICE must not be empty", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        settings = make_settings(args)
        with make_control_plane(settings) as control_plane:
            descriptor = EndpointResolver(control_plane).resolve(args.service)
        install_signal_handlers()
        return open_interactive(descriptor, settings)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except PodctlError as e:
        return report_error(e)


if __name__ == "__main__":
    sys.exit(main())
