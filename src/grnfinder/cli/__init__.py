"""
grnfinder CLI - Command-line interface for gene regulatory network inference.

Commands:
    grnfinder run       - Full pipeline from a config file
    grnfinder modules   - Rebuild modules from saved fit tables with new thresholds
"""

import argparse
import logging
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for grnfinder."""
    parser = argparse.ArgumentParser(
        prog="grnfinder",
        description="Gene regulatory network inference from paired expression and accessibility data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       Full pipeline: regions -> motifs -> models -> modules -> network
  modules   Rebuild modules from saved fit tables with new thresholds

Examples:
  grnfinder run --config pipeline.yaml --workers 4
  grnfinder modules --coefficients results/coefficients.csv --gof results/gof.csv --p-thresh 0.01
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from grnfinder.cli import modules, run
    run.register_parser(subparsers)
    modules.register_parser(subparsers)

    argv = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Raw arguments after the subcommand, for config override detection
    parsed_args.cli_args = argv[argv.index(parsed_args.command) + 1:]

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
