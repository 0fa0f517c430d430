"""podctl-jupyter -- Open a service's Jupyter URL in a browser."""

import sys
import webbrowser

from podctl.cli._common import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_USAGE_ERROR,
    base_parser,
    configure_logging,
    make_control_plane,
    make_settings,
    report_error,
)
from podctl.errors import PodctlError
from podctl.resolver import EndpointResolver


def main() -> int:
    parser = base_parser("Open the Jupyter URL of a service")
    parser.add_argument("service", metavar="SERVICE", help="service identifier")
    parser.add_argument("-p", "--print", dest="print_only", action="store_true", help="print the URL only")
    args = parser.parse_args()
    configure_logging(args.verbose)

    if not args.service.strip():
        print("Error: SERVICE must not be empty", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        settings = make_settings(args)
        with make_control_plane(settings) as control_plane:
            url = EndpointResolver(control_plane).resolve_jupyter(args.service)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except PodctlError as e:
        return report_error(e)

    if args.print_only or not webbrowser.open(url):
        print(url)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
