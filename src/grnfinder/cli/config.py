"""
Configuration file support for the grnfinder CLI.

Supports YAML and JSON config files with CLI argument override.

Example pipeline.yaml:

    inputs:
      rna: data/rna.csv
      atac:
        matrix: data/atac.mtx
        features: data/peaks.tsv
        cells: data/barcodes.tsv
      annotation: ref/genes.gtf
      genome: ref/genome.fa
      motifs: ref/motifs.jaspar
      motif2tf: ref/motif2tf.tsv
    regions:
      filter: ref/conserved.bed
      exclude_exons: true
    motifs:
      p_value: 5.0e-5
    inference:
      association: window
      association_options: {upstream: 100000, downstream: 0}
      workers: 4
    modules:
      p_thresh: 0.05
      rsq_thresh: 0.1
    graph:
      layout: embedding
    output: results/grn

Relative paths are resolved against the directory of the config file.
"""

from __future__ import annotations

import json
from argparse import Namespace
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from grnfinder.exceptions import ConfigError
from grnfinder.inference.association import AssociationMethod
from grnfinder.network.layouts import LAYOUTS

SECTIONS = ('inputs', 'regions', 'motifs', 'inference', 'modules', 'graph', 'output')


@dataclass
class MatrixInput:
    """A features x cells matrix: CSV, or Matrix Market plus id files."""
    matrix: Path
    features: Optional[Path] = None
    cells: Optional[Path] = None
    feature_column: int = 0


@dataclass
class InputsConfig:
    """Input files."""
    rna: Optional[MatrixInput] = None
    atac: Optional[MatrixInput] = None
    cell_metadata: Optional[Path] = None
    annotation: Optional[Path] = None
    genome: Optional[Path] = None
    motifs: Optional[Path] = None
    motif2tf: Optional[Path] = None


@dataclass
class RegionsConfig:
    """Candidate region selection."""
    filter: Optional[Path] = None
    exclude: Optional[Path] = None
    exclude_exons: bool = False


@dataclass
class MotifConfig:
    """Motif scanning."""
    p_value: float = 5e-5
    tfs: Optional[List[str]] = None
    background: Optional[List[float]] = None
    workers: int = 1

    def __post_init__(self):
        # YAML reads "5e-5" as a string
        self.p_value = float(self.p_value)


@dataclass
class InferenceConfig:
    """Per-gene model fitting."""
    association: str = "window"
    association_options: Dict[str, Any] = field(default_factory=dict)
    genes: Optional[List[str]] = None
    tf_cor: float = 0.1
    peak_cor: float = 0.0
    scale: bool = False
    aggregate_by: Optional[str] = None
    workers: int = 1

    def __post_init__(self):
        self.tf_cor = float(self.tf_cor)
        self.peak_cor = float(self.peak_cor)
        self.workers = int(self.workers)


@dataclass
class ModuleConfig:
    """Module thresholds."""
    p_thresh: float = 0.05
    model_p_thresh: float = 1.0
    min_terms: int = 1
    min_genes_per_module: int = 1
    rsq_thresh: float = 0.0
    top_k: Optional[int] = None
    use_padj: bool = True

    def __post_init__(self):
        self.p_thresh = float(self.p_thresh)
        self.rsq_thresh = float(self.rsq_thresh)
        self.model_p_thresh = float(self.model_p_thresh)
        self.min_terms = int(self.min_terms)
        self.min_genes_per_module = int(self.min_genes_per_module)
        if self.top_k is not None:
            self.top_k = int(self.top_k)


@dataclass
class GraphConfig:
    """Network assembly and rendering."""
    layout: str = "force"
    validate: bool = True
    figure: bool = True
    figure_format: str = "png"
    palette: str = "default"


@dataclass
class PipelineConfig:
    """
    Complete configuration schema for `grnfinder run`.

    Mirrors the CLI argument structure for consistency.
    """
    inputs: InputsConfig = field(default_factory=InputsConfig)
    regions: RegionsConfig = field(default_factory=RegionsConfig)
    motifs: MotifConfig = field(default_factory=MotifConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    modules: ModuleConfig = field(default_factory=ModuleConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    output: Path = Path("results/grnfinder")

    @classmethod
    def from_dict(cls, config: Dict[str, Any], base_dir: Optional[Path] = None) -> PipelineConfig:
        """
        Build a validated config from a loaded mapping.

        Raises:
            ConfigError: Unknown sections or keys, or invalid values
        """
        validate_config(config)
        base_dir = Path(base_dir) if base_dir is not None else Path(".")

        def resolve(value):
            if value is None:
                return None
            path = Path(value).expanduser()
            return path if path.is_absolute() else base_dir / path

        inputs = dict(config.get('inputs') or {})
        for key in ('rna', 'atac'):
            if inputs.get(key) is not None:
                inputs[key] = _matrix_input(inputs[key], resolve)
        for key in ('cell_metadata', 'annotation', 'genome', 'motifs', 'motif2tf'):
            inputs[key] = resolve(inputs.get(key))

        regions = dict(config.get('regions') or {})
        for key in ('filter', 'exclude'):
            regions[key] = resolve(regions.get(key))

        output = config.get('output')
        try:
            return cls(
                inputs=InputsConfig(**inputs),
                regions=RegionsConfig(**regions),
                motifs=MotifConfig(**(config.get('motifs') or {})),
                inference=InferenceConfig(**(config.get('inference') or {})),
                modules=ModuleConfig(**(config.get('modules') or {})),
                graph=GraphConfig(**(config.get('graph') or {})),
                output=resolve(output) if output is not None else cls.output,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict (paths as strings)."""
        return json.loads(json.dumps(asdict(self), default=str))


def _matrix_input(value: Any, resolve) -> MatrixInput:
    if isinstance(value, (str, Path)):
        return MatrixInput(matrix=resolve(value))
    if not isinstance(value, dict) or 'matrix' not in value:
        raise ConfigError(f"Matrix input must be a path or a mapping with 'matrix', got: {value!r}")
    return MatrixInput(
        matrix=resolve(value['matrix']),
        features=resolve(value.get('features')),
        cells=resolve(value.get('cells')),
        feature_column=int(value.get('feature_column', 0)),
    )


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If the file is missing, unsupported or invalid

    Examples:
        >>> config = load_config(Path("pipeline.yaml"))
        >>> print(config['inference']['association'])
        window
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ConfigError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a dictionary/mapping at top level")

    return config


_SCHEMAS = {
    'inputs': InputsConfig,
    'regions': RegionsConfig,
    'motifs': MotifConfig,
    'inference': InferenceConfig,
    'modules': ModuleConfig,
    'graph': GraphConfig,
}


def _number(section: str, key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{key} must be a number, got: {value!r}") from e


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Performs basic validation:
    - Only known sections and keys
    - Valid association method and layout choices
    - Thresholds in range

    Raises:
        ConfigError: If configuration is invalid
    """
    unknown = [key for key in config if key not in SECTIONS]
    if unknown:
        raise ConfigError(f"Unknown config sections: {unknown}. Valid: {', '.join(SECTIONS)}")

    for section, schema in _SCHEMAS.items():
        values = config.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        valid = {f.name for f in fields(schema)}
        bad = [key for key in values if key not in valid]
        if bad:
            raise ConfigError(f"Unknown keys in '{section}': {bad}. Valid: {', '.join(sorted(valid))}")

    inference = config.get('inference') or {}
    if 'association' in inference:
        valid_methods = [m.value for m in AssociationMethod]
        if inference['association'] not in valid_methods:
            raise ConfigError(
                f"Invalid association method '{inference['association']}'. "
                f"Choose from: {', '.join(valid_methods)}"
            )
    for key in ('tf_cor', 'peak_cor'):
        if key in inference and not 0.0 <= _number('inference', key, inference[key]) <= 1.0:
            raise ConfigError(f"inference.{key} must be in [0, 1], got: {inference[key]}")

    layout = (config.get('graph') or {}).get('layout')
    if layout is not None and layout not in LAYOUTS:
        raise ConfigError(f"Invalid layout '{layout}'. Choose from: {', '.join(sorted(LAYOUTS))}")

    modules = config.get('modules') or {}
    if 'p_thresh' in modules and not 0.0 < _number('modules', 'p_thresh', modules['p_thresh']) <= 1.0:
        raise ConfigError(f"modules.p_thresh must be in (0, 1], got: {modules['p_thresh']}")
    if 'rsq_thresh' in modules and not 0.0 <= _number('modules', 'rsq_thresh', modules['rsq_thresh']) <= 1.0:
        raise ConfigError(f"modules.rsq_thresh must be in [0, 1], got: {modules['rsq_thresh']}")
    model_p = modules.get('model_p_thresh')
    if model_p is not None and not 0.0 < _number('modules', 'model_p_thresh', model_p) <= 1.0:
        raise ConfigError(f"modules.model_p_thresh must be in (0, 1], got: {modules['model_p_thresh']}")

    motifs = config.get('motifs') or {}
    if 'p_value' in motifs and not 0.0 < _number('motifs', 'p_value', motifs['p_value']) < 1.0:
        raise ConfigError(f"motifs.p_value must be in (0, 1), got: {motifs['p_value']}")


# CLI argument -> (section, key) in the config file
ARG_TO_CONFIG = {
    'output': ('output', None),
    'workers': ('inference', 'workers'),
    'layout': ('graph', 'layout'),
    'p_thresh': ('modules', 'p_thresh'),
    'model_p_thresh': ('modules', 'model_p_thresh'),
    'min_terms': ('modules', 'min_terms'),
    'min_genes_per_module': ('modules', 'min_genes_per_module'),
    'rsq_thresh': ('modules', 'rsq_thresh'),
    'top_k': ('modules', 'top_k'),
    'use_padj': ('modules', 'use_padj'),
}

_FLAG_TO_ARG = {
    "no_padj": "use_padj",
}

_SHORT_TO_LONG = {
    'o': 'output',
    'c': 'config',
    'j': 'workers',
}


def _explicit_args(cli_args: Optional[List[str]]) -> set[str]:
    """Argument names the user typed on the command line."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            name = arg[2:].split("=", 1)[0].replace("-", "_")
            explicit.add(_FLAG_TO_ARG.get(name, name))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in _SHORT_TO_LONG:
            explicit.add(_SHORT_TO_LONG[arg[1]])
    return explicit


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value
    if config_value is not None:
        return config_value
    return cli_value


def _typed_section(config: Dict[str, Any], section: str) -> Dict[str, Any]:
    """Values given in one config section, converted by its dataclass."""
    values = config.get(section) or {}
    try:
        converted = asdict(_SCHEMAS[section](**values))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in config section '{section}': {e}") from e
    return {key: converted[key] for key in values}


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values

    Raises:
        ConfigError: If a config value cannot be converted to its type
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))
    typed = {
        section: _typed_section(config, section)
        for section, key in ARG_TO_CONFIG.values() if key is not None
    }

    for arg_name, (section, key) in ARG_TO_CONFIG.items():
        if not hasattr(merged, arg_name):
            continue
        if key is None:
            config_value = config.get(section)
        else:
            config_value = typed[section].get(key)
        if config_value is not None and arg_name == 'output':
            config_value = Path(config_value)
        setattr(
            merged,
            arg_name,
            _merge_value(getattr(merged, arg_name), config_value, arg_name in explicit),
        )

    return merged
