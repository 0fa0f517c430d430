"""podctl-cp / podcp -- Copy one file to or from a service."""

import sys

from podctl.cli._common import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    base_parser,
    configure_logging,
    install_signal_handlers,
    make_control_plane,
    make_settings,
    report_error,
)
from podctl.errors import PodctlError
from podctl.pathspec import Direction, parse_copy_args
from podctl.resolver import EndpointResolver
from podctl import transfer


def main() -> int:
    parser = base_parser("Copy a file to or from a service (SERVICE:PATH names the remote side)")
    parser.add_argument("source", metavar="SOURCE", help="local path or SERVICE:PATH")
    parser.add_argument("destination", metavar="DESTINATION", help="local path or SERVICE:PATH")
    parser.add_argument("-q", "--quiet", action="store_true", help="no summary line on success")
    args = parser.parse_args()
    configure_logging(args.verbose)

    try:
        plan = parse_copy_args(args.source, args.destination)
        settings = make_settings(args)
        with make_control_plane(settings) as control_plane:
            descriptor = EndpointResolver(control_plane).resolve(plan.service_id)
        install_signal_handlers()
        result = transfer.copy(plan, descriptor, settings)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except PodctlError as e:
        return report_error(e)

    if not args.quiet:
        if result.direction is Direction.UPLOAD:
            print(f"{result.local_path} -> {plan.service_id}:{result.remote_path} ({result.size} bytes)")
        else:
            print(f"{plan.service_id}:{result.remote_path} -> {result.local_path} ({result.size} bytes)")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
