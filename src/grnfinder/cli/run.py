"""
grnfinder run command - full pipeline from a config file.

Stages: load inputs -> select regions -> scan motifs -> fit per-gene
models -> build modules -> assemble and render the network.

Usage:
    grnfinder run --config pipeline.yaml --output results/grn --workers 4
"""

import argparse
import logging
from pathlib import Path


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Run the full inference pipeline from a config file",
        description=(
            "Select candidate regions, scan them for TF motifs, fit one "
            "regression model per target gene and assemble the regulatory "
            "network. All inputs and parameters come from the config file; "
            "the options below override it."
        )
    )
    parser.add_argument("--config", "-c", type=Path, required=True,
                        help="Pipeline config (.yaml, .yml or .json)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory (overrides config 'output')")
    parser.add_argument("--workers", "-j", type=int, default=None,
                        help="Worker processes for model fitting (overrides inference.workers)")
    parser.add_argument("--layout", choices=["force", "fr", "embedding", "circular", "hierarchical"],
                        default=None, help="Network layout (overrides graph.layout)")
    parser.add_argument("--no-figure", action="store_true",
                        help="Skip rendering the network figure")
    parser.set_defaults(func=run_pipeline)


def _load_inputs(cfg):
    from grnfinder.io import (
        load_annotation,
        load_modality,
        load_motif2tf,
        load_motifs,
        load_regions,
    )
    from grnfinder.motifs.genome import FastaGenome

    inputs = cfg.inputs
    required = ['rna', 'atac', 'annotation', 'genome', 'motifs', 'motif2tf']
    missing = [name for name in required if getattr(inputs, name) is None]
    if missing:
        raise ValueError(f"Config 'inputs' is missing: {missing}")

    def modality(entry, name):
        return load_modality(
            entry.matrix,
            name=name,
            features=entry.features,
            cells=entry.cells,
            feature_column=entry.feature_column,
            cell_metadata=inputs.cell_metadata,
        )

    return {
        'rna': modality(inputs.rna, "rna"),
        'atac': modality(inputs.atac, "atac"),
        'annotation': load_annotation(inputs.annotation),
        'genome': FastaGenome(inputs.genome),
        'motifs': load_motifs(inputs.motifs),
        'motif2tf': load_motif2tf(inputs.motif2tf),
        'filter_regions': load_regions(cfg.regions.filter) if cfg.regions.filter else None,
        'exclude_regions': load_regions(cfg.regions.exclude) if cfg.regions.exclude else None,
    }


def run_pipeline(args: argparse.Namespace) -> int:
    """Execute the run command."""
    from grnfinder import pipeline
    from grnfinder.cli.config import PipelineConfig, load_config
    from grnfinder.exceptions import ConfigError, GRNError
    from grnfinder.io import write_coefficients, write_graph, write_modules, write_run_config
    from grnfinder.viz.styles import configure_style

    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        cfg = PipelineConfig.from_dict(config, base_dir=args.config.parent)
    except (ConfigError, TypeError) as e:
        logger.error(f"Config file error: {e}")
        return 1

    if args.output is not None:
        cfg.output = args.output
    if args.workers is not None:
        cfg.inference.workers = args.workers
    if args.layout is not None:
        cfg.graph.layout = args.layout
    if args.no_figure:
        cfg.graph.figure = False

    print(f"\n{'='*70}")
    print("  Gene Regulatory Network Inference")
    print(f"{'='*70}\n")

    output = Path(cfg.output)
    output.mkdir(parents=True, exist_ok=True)
    write_run_config(cfg.to_dict(), output / "config.json")

    try:
        inputs = _load_inputs(cfg)

        state = pipeline.initiate(
            inputs['rna'],
            inputs['atac'],
            filter_regions=inputs['filter_regions'],
            exclude_regions=inputs['exclude_regions'],
            annotation=inputs['annotation'],
            exclude_exons=cfg.regions.exclude_exons,
        )
        state = pipeline.scan_motifs(
            state,
            inputs['motifs'],
            inputs['motif2tf'],
            inputs['genome'],
            tfs=cfg.motifs.tfs,
            p_value=cfg.motifs.p_value,
            background=cfg.motifs.background,
            n_workers=cfg.motifs.workers,
        )
        state = pipeline.infer(
            state,
            association=cfg.inference.association,
            association_options=cfg.inference.association_options,
            genes=cfg.inference.genes,
            tf_cor=cfg.inference.tf_cor,
            peak_cor=cfg.inference.peak_cor,
            scale=cfg.inference.scale,
            aggregate_by=cfg.inference.aggregate_by,
            n_workers=cfg.inference.workers,
        )
        write_coefficients(state.fit, output)

        state = pipeline.build_modules(
            state,
            p_thresh=cfg.modules.p_thresh,
            model_p_thresh=cfg.modules.model_p_thresh,
            min_terms=cfg.modules.min_terms,
            min_genes_per_module=cfg.modules.min_genes_per_module,
            rsq_thresh=cfg.modules.rsq_thresh,
            top_k=cfg.modules.top_k,
            use_padj=cfg.modules.use_padj,
        )
        write_modules(state.modules, output)

        state = pipeline.build_graph(state, layout=cfg.graph.layout, validate=cfg.graph.validate)
        write_graph(state.graph, output)
    except (GRNError, FileNotFoundError, ValueError) as e:
        logger.error(f"Pipeline failed: {e}")
        return 1

    if cfg.graph.figure:
        configure_style("paper")
        fig = pipeline.render_graph(state, palette=cfg.graph.palette)
        path = fig.save(output / f"network.{cfg.graph.figure_format}")
        fig.close()
        logger.info(f"Saved figure: {path}")

    print(f"\n{'='*70}")
    print(f"  {len(state.fit)} gene models, {len(state.modules)} modules, "
          f"{state.graph.number_of_edges()} edges")
    print(f"  Results: {output}")
    print(f"{'='*70}\n")
    return 0
