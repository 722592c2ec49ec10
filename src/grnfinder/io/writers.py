"""
Writers for pipeline results.

Output files:
    coefficients.csv   one row per model term (tf, target, region, estimate, ..., padj)
    gof.csv            one row per fitted gene (rsq, adj_rsq, nvar, n_obs, aic, model_pval)
    skipped.csv        genes without a model and why
    modules.csv        retained edges, grouped by regulator
    module_meta.csv    per-regulator module statistics
    network.graphml    the directed network (GraphML, readable by Cytoscape/Gephi)
    network_edges.csv  the same edges as a flat table
    config.json        parameters of the run

All tables are plain CSV so they can be re-read by `grnfinder modules` or
any R/Python session.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import networkx as nx
import pandas as pd

from grnfinder.inference.fitter import FitResult
from grnfinder.network.modules import ModuleSet

logger = logging.getLogger(__name__)

__all__ = [
    'write_coefficients',
    'write_modules',
    'write_graph',
    'write_run_config',
]


def _prepare(path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_coefficients(fit: FitResult, output_dir: Path | str) -> dict[str, Path]:
    """
    Write coefficients.csv, gof.csv and skipped.csv.

    Returns:
        Mapping of table name -> written path
    """
    output_dir = Path(output_dir)
    paths = {
        'coefficients': _prepare(output_dir / "coefficients.csv"),
        'gof': _prepare(output_dir / "gof.csv"),
        'skipped': _prepare(output_dir / "skipped.csv"),
    }
    fit.coefficients().to_csv(paths['coefficients'], index=False)
    fit.gof().to_csv(paths['gof'], index=False)
    pd.DataFrame(
        list(fit.skipped.items()), columns=['gene', 'reason']
    ).to_csv(paths['skipped'], index=False)
    logger.info(f"Wrote {len(fit)} models to {paths['coefficients']}")
    return paths


def write_modules(modules: ModuleSet, output_dir: Path | str) -> dict[str, Path]:
    """Write modules.csv (edges) and module_meta.csv."""
    output_dir = Path(output_dir)
    paths = {
        'modules': _prepare(output_dir / "modules.csv"),
        'module_meta': _prepare(output_dir / "module_meta.csv"),
    }
    modules.edges().to_csv(paths['modules'], index=False)
    modules.meta.to_csv(paths['module_meta'], index=False)
    logger.info(f"Wrote {len(modules)} modules to {paths['modules']}")
    return paths


def write_graph(graph: nx.DiGraph, output_dir: Path | str, stem: str = "network") -> dict[str, Path]:
    """Write <stem>.graphml and <stem>_edges.csv."""
    output_dir = Path(output_dir)
    paths = {
        'graphml': _prepare(output_dir / f"{stem}.graphml"),
        'edges': _prepare(output_dir / f"{stem}_edges.csv"),
    }
    nx.write_graphml(graph, paths['graphml'])
    edges = pd.DataFrame(
        [{'source': u, 'target': v, **data} for u, v, data in graph.edges(data=True)]
    )
    edges.to_csv(paths['edges'], index=False)
    logger.info(
        f"Wrote network ({graph.number_of_nodes()} nodes, {graph.number_of_edges()} edges) "
        f"to {paths['graphml']}"
    )
    return paths


def write_run_config(config: Mapping[str, Any], path: Path | str) -> Path:
    """Write run parameters as indented JSON (non-JSON values stringified)."""
    path = _prepare(path)
    with open(path, 'w') as f:
        json.dump(config, f, indent=2, default=str)
    return path
