"""Pipeline configuration loader and validator.

A pipeline file has three sections::

    pipeline:
      name: day-course
    global:
      output_dir: output/run1
      registry: data/samples.csv
    stages:
      preprocess:
        kind: preprocess
        inputs: {registry: "{global.registry}"}
        outputs: {dir: "{global.output_dir}/preprocess"}
      cluster:
        kind: cluster
        depends_on: [preprocess]
        inputs: {adata: "{stages.preprocess.outputs.dir}/merged.h5ad"}
        outputs: {dir: "{global.output_dir}/cluster"}
        params:
          clustering: {method: som, xdim: 10, ydim: 10}
"""

import re
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .stage import Stage

TEMPLATE_PATTERN = re.compile(r"\{([A-Za-z_][\w.\-]*)\}")
MAX_TEMPLATE_DEPTH = 10


class PipelineConfig:
    """Loads and manages pipeline configuration from YAML files.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file

    Attributes
    ----------
    config_path : Path
        Path to the configuration file
    raw_config : Dict[str, Any]
        Raw configuration dictionary loaded from YAML
    stages : Dict[str, Stage]
        Stage ID -> Stage, in file order
    global_settings : Dict[str, Any]
        ``pipeline`` and ``global`` sections

    Example
    -------
    >>> config = PipelineConfig("pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> valid, errors = config.validate_dependencies()
    >>> order = config.get_execution_order()
    """

    def __init__(self, config_path: Union[str, Path]):
        self.config_path = Path(config_path)
        self.raw_config: Dict[str, Any] = {}
        self.stages: Dict[str, Stage] = {}
        self.global_settings: Dict[str, Any] = {}

    def load(self) -> None:
        """Load YAML configuration file.

        Raises
        ------
        FileNotFoundError
            If config file doesn't exist
        yaml.YAMLError
            If YAML is malformed
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            self.raw_config = yaml.safe_load(f) or {}

        self.global_settings = {
            "pipeline": self.raw_config.get("pipeline", {}) or {},
            "global": self.raw_config.get("global", {}) or {},
        }

    def parse_stages(self) -> None:
        """Convert YAML stage definitions to Stage objects.

        Templates in every string (including nested params) are resolved
        first.

        Raises
        ------
        KeyError
            If there is no stages section or a stage has no kind
        ValueError
            If a stage kind is unknown
        """
        if "stages" not in self.raw_config:
            raise KeyError("No 'stages' section in configuration")

        self.stages = {}
        for stage_id, stage_def in (self.raw_config["stages"] or {}).items():
            resolved = self.resolve_value(stage_def or {})
            self.stages[str(stage_id)] = Stage.from_dict(resolved, str(stage_id))

    def lookup(self, reference: str) -> Optional[Any]:
        """Value at a dotted reference like ``global.output_dir``, or None."""
        value: Any = self.raw_config
        for part in reference.split("."):
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value

    def resolve_paths(self, template: str) -> str:
        """Resolve ``{...}`` references in a string.

        References can point at ``global.*``, ``pipeline.*`` or any field
        of another stage (``stages.ID.outputs.dir``). Unknown references and
        references to non-scalar values are left untouched.

        Parameters
        ----------
        template : str
            String possibly containing templates

        Returns
        -------
        str
            String with templates replaced
        """
        resolved = template
        for _ in range(MAX_TEMPLATE_DEPTH):
            if "{" not in resolved:
                break

            def replace(match):
                value = self.lookup(match.group(1))
                if value is None or isinstance(value, (dict, list)):
                    return match.group(0)
                return str(value)

            updated = TEMPLATE_PATTERN.sub(replace, resolved)
            if updated == resolved:
                break
            resolved = updated
        return resolved

    def resolve_value(self, value: Any) -> Any:
        """Resolve templates in strings nested anywhere in ``value``."""
        if isinstance(value, str):
            return self.resolve_paths(value)
        if isinstance(value, dict):
            return {k: self.resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(v) for v in value]
        return value

    def _kahn_order(self) -> List[str]:
        """Topological order of known stages; shorter than stages if cyclic."""
        in_degree = {
            stage_id: sum(1 for dep in stage.depends_on if dep in self.stages)
            for stage_id, stage in self.stages.items()
        }
        dependents: Dict[str, List[str]] = {stage_id: [] for stage_id in self.stages}
        for stage_id, stage in self.stages.items():
            for dep in stage.depends_on:
                if dep in dependents:
                    dependents[dep].append(stage_id)

        queue = deque(sid for sid, degree in in_degree.items() if degree == 0)
        order = []
        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)
            for other_id in dependents[stage_id]:
                in_degree[other_id] -= 1
                if in_degree[other_id] == 0:
                    queue.append(other_id)
        return order

    def validate_dependencies(self) -> Tuple[bool, List[str]]:
        """Check that dependencies exist and contain no cycle.

        Returns
        -------
        Tuple[bool, List[str]]
            (valid, errors)
        """
        errors = []
        for stage_id, stage in self.stages.items():
            for dep in stage.depends_on:
                if dep not in self.stages:
                    errors.append(f"Stage '{stage_id}' depends on unknown stage '{dep}'")

        order = self._kahn_order()
        if len(order) != len(self.stages):
            cyclic = sorted(set(self.stages) - set(order))
            errors.append(f"Circular dependency detected among stages: {cyclic}")

        return (len(errors) == 0, errors)

    def get_execution_order(self) -> List[str]:
        """Stage IDs in dependency order (file order among independent stages).

        Raises
        ------
        ValueError
            If circular dependencies are detected
        """
        order = self._kahn_order()
        if len(order) != len(self.stages):
            raise ValueError("Circular dependency detected - cannot compute execution order")
        return order

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        """Get a stage by its ID, or None."""
        return self.stages.get(stage_id)

    def list_stages(self) -> List[str]:
        """List all stage IDs."""
        return list(self.stages.keys())

    @property
    def output_dir(self) -> Path:
        """Pipeline output directory (``global.output_dir``, default ``output``)."""
        return Path(str(self.global_settings.get("global", {}).get("output_dir", "output")))

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "pipeline": self.global_settings.get("pipeline", {}),
            "global": self.global_settings.get("global", {}),
            "stages": {
                stage_id: stage.to_dict() for stage_id, stage in self.stages.items()
            },
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PipelineConfig":
        """Create PipelineConfig from a dictionary and parse its stages."""
        config = cls(".")
        config.raw_config = config_dict
        config.global_settings = {
            "pipeline": config_dict.get("pipeline", {}) or {},
            "global": config_dict.get("global", {}) or {},
        }
        config.parse_stages()
        return config
