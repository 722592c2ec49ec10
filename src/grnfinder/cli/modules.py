"""
grnfinder modules command - rebuild modules from saved fit tables.

Thresholds can be explored without refitting: coefficients.csv and
gof.csv written by `grnfinder run` are enough.

Usage:
    grnfinder modules --coefficients results/coefficients.csv --gof results/gof.csv \\
        --p-thresh 0.01 --rsq-thresh 0.2 --output results/strict
"""

import argparse
import logging
import sys
from pathlib import Path


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the modules subcommand."""
    parser = subparsers.add_parser(
        "modules",
        help="Rebuild regulator modules from saved fit tables",
        description="Apply new module thresholds to saved coefficient and goodness-of-fit tables."
    )
    parser.add_argument("--coefficients", type=Path, required=True,
                        help="coefficients.csv from a previous run")
    parser.add_argument("--gof", type=Path, required=True,
                        help="gof.csv from a previous run")
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Config file; its 'modules' section supplies defaults")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/modules"),
                        help="Output directory")

    parser.add_argument("--p-thresh", type=float, default=0.05,
                        help="Maximum term p-value (default: 0.05)")
    parser.add_argument("--model-p-thresh", type=float, default=1.0,
                        help="Maximum model F-test p-value (default: 1.0, no filter)")
    parser.add_argument("--rsq-thresh", type=float, default=0.0,
                        help="Minimum model R-squared (default: 0.0)")
    parser.add_argument("--min-terms", type=int, default=1,
                        help="Minimum fitted terms per gene model, significant or not (default: 1)")
    parser.add_argument("--min-genes-per-module", type=int, default=1,
                        help="Minimum targets per module (default: 1)")
    parser.add_argument("--top-k", type=int, default=None,
                        help="Keep only the k strongest targets per regulator")
    parser.add_argument("--no-padj", dest="use_padj", action="store_false",
                        help="Threshold raw p-values instead of BH-adjusted ones")
    parser.add_argument("--graph", action="store_true",
                        help="Also write the network (GraphML + edge table)")
    parser.set_defaults(func=run_modules)


def run_modules(args: argparse.Namespace) -> int:
    """Execute the modules command."""
    import pandas as pd

    from grnfinder.cli.config import load_config, merge_config_with_args, validate_config
    from grnfinder.exceptions import ConfigError, GRNError
    from grnfinder.inference.fitter import FitResult
    from grnfinder.io import write_graph, write_modules, write_run_config
    from grnfinder.network.graph import build_graph
    from grnfinder.network.modules import ModuleThresholds, build_modules

    logger = logging.getLogger(__name__)

    if args.config:
        cli_args = getattr(args, 'cli_args', None)
        if cli_args is None:
            cli_args = sys.argv[2:]
        try:
            config = load_config(args.config)
            validate_config(config)
            args = merge_config_with_args(config, args, cli_args)
        except ConfigError as e:
            logger.error(f"Config file error: {e}")
            return 1

    for path in (args.coefficients, args.gof):
        if not path.exists():
            logger.error(f"File not found: {path}")
            return 1

    try:
        thresholds = ModuleThresholds(
            p_thresh=args.p_thresh,
            model_p_thresh=args.model_p_thresh,
            min_terms=args.min_terms,
            min_genes_per_module=args.min_genes_per_module,
            rsq_thresh=args.rsq_thresh,
            top_k=args.top_k,
            use_padj=args.use_padj,
        )
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid thresholds: {e}")
        return 1
    logger.info(f"Thresholds: {thresholds.to_dict()}")

    try:
        fit = FitResult.from_tables(pd.read_csv(args.coefficients), pd.read_csv(args.gof))
        modules = build_modules(fit, thresholds)
    except (GRNError, ValueError) as e:
        logger.error(f"Module building failed: {e}")
        return 1

    write_modules(modules, args.output)
    write_run_config(
        {'coefficients': args.coefficients, 'gof': args.gof, 'modules': thresholds.to_dict()},
        Path(args.output) / "config.json",
    )
    if args.graph:
        write_graph(build_graph(modules, fit=fit), args.output)

    print(f"{len(modules)} modules, {len(modules.edges())} edges -> {args.output}")
    return 0
