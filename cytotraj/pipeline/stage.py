"""Stage representation and validation for pipeline execution."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Tuple


class StageKind(NamedTuple):
    """What a stage kind runs and which files it reads and writes."""

    module: str
    input_name: str
    input_flag: str
    output_file: str


STAGE_KINDS: Dict[str, StageKind] = {
    "preprocess": StageKind("cytotraj.core.preprocessing", "registry", "--registry", "merged.h5ad"),
    "cluster": StageKind("cytotraj.core.clustering", "adata", "--input", "clustered.h5ad"),
    "reduce": StageKind("cytotraj.core.reduction", "adata", "--input", "reduced.h5ad"),
    "trajectory": StageKind("cytotraj.core.trajectory", "adata", "--input", "trajectory.h5ad"),
}


@dataclass
class Stage:
    """A single pipeline stage with inputs, outputs, and dependencies.

    Attributes
    ----------
    name : str
        Human-readable stage name
    stage_id : str
        Short identifier (e.g. "preprocess", "cluster_som")
    kind : str
        One of preprocess, cluster, reduce, trajectory
    depends_on : List[str]
        Stage IDs this stage depends on
    inputs : Dict[str, str]
        Input name -> path. The kind's main input ("registry" or "adata")
        is required.
    outputs : Dict[str, str]
        Output name -> path. ``dir`` is the stage output directory.
    params : Dict[str, Any]
        ``config`` (YAML path) plus nested overrides of the stage config
    optional : bool
        Skip instead of failing when inputs are missing

    Example
    -------
    >>> stage = Stage(
    ...     name="Clustering",
    ...     stage_id="cluster",
    ...     kind="cluster",
    ...     inputs={"adata": "out/preprocess/merged.h5ad"},
    ...     outputs={"dir": "out/cluster"},
    ...     params={"clustering": {"method": "som", "xdim": 10, "ydim": 10}},
    ... )
    >>> stage.output_path
    PosixPath('out/cluster/clustered.h5ad')
    """

    name: str
    stage_id: str
    kind: str
    depends_on: List[str] = field(default_factory=list)
    inputs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    optional: bool = False

    def __post_init__(self):
        if self.kind not in STAGE_KINDS:
            raise ValueError(
                f"Stage '{self.stage_id}' has unknown kind '{self.kind}'. "
                f"Choose from {list(STAGE_KINDS)}"
            )

    @property
    def spec(self) -> StageKind:
        return STAGE_KINDS[self.kind]

    @property
    def input_path(self) -> Path:
        """Main input file of the stage."""
        name = self.spec.input_name
        if name not in self.inputs:
            raise KeyError(f"Stage '{self.stage_id}' missing input '{name}'")
        return Path(self.inputs[name])

    @property
    def output_dir(self) -> Path:
        if "dir" not in self.outputs:
            raise KeyError(f"Stage '{self.stage_id}' missing output 'dir'")
        return Path(self.outputs["dir"])

    @property
    def output_path(self) -> Path:
        """Main AnnData written by the stage."""
        return self.output_dir / self.spec.output_file

    def validate_inputs(self) -> Tuple[bool, List[str]]:
        """Check that the main input and any other inputs exist.

        Returns
        -------
        Tuple[bool, List[str]]
            (success, errors)
        """
        errors = []
        if self.spec.input_name not in self.inputs:
            errors.append(f"Input '{self.spec.input_name}' not configured")

        for name, path in self.inputs.items():
            if not Path(path).exists():
                errors.append(f"Input '{name}' not found: {path}")

        config_path = self.params.get("config")
        if config_path and not Path(config_path).exists():
            errors.append(f"Config file not found: {config_path}")

        return (len(errors) == 0, errors)

    def validate_outputs(self) -> Tuple[bool, List[str]]:
        """Check that declared outputs and the main AnnData exist after running.

        Returns
        -------
        Tuple[bool, List[str]]
            (success, errors)
        """
        errors = []
        for name, path in self.outputs.items():
            if not Path(path).exists():
                errors.append(f"Output '{name}' not found: {path}")
        if "dir" in self.outputs and not self.output_path.exists():
            errors.append(f"Stage output not written: {self.output_path}")
        return (len(errors) == 0, errors)

    def get_command(self) -> List[str]:
        """Equivalent command line for running this stage on its own.

        Nested parameter overrides are not representable as flags; only
        ``params["config"]`` is passed through.

        Example
        -------
        >>> stage.get_command()
        ['python', '-m', 'cytotraj.core.clustering', '--input', '...', '--output', '...']
        """
        cmd = ["python", "-m", self.spec.module]
        if self.spec.input_name in self.inputs:
            cmd.extend([self.spec.input_flag, str(self.inputs[self.spec.input_name])])
        if "dir" in self.outputs:
            cmd.extend(["--output", str(self.outputs["dir"])])
        if self.params.get("config"):
            cmd.extend(["--config", str(self.params["config"])])
        return cmd

    def to_dict(self) -> Dict[str, Any]:
        """Convert stage to dictionary for serialization."""
        return {
            "name": self.name,
            "stage_id": self.stage_id,
            "kind": self.kind,
            "depends_on": list(self.depends_on),
            "inputs": dict(self.inputs),
            "outputs": dict(self.outputs),
            "params": dict(self.params),
            "optional": self.optional,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], stage_id: str) -> "Stage":
        """Create Stage from a (template-resolved) dictionary.

        Raises
        ------
        KeyError
            If ``kind`` is missing
        """
        if "kind" not in data:
            raise KeyError(f"Stage '{stage_id}' missing required field 'kind'")
        return cls(
            name=data.get("name", stage_id),
            stage_id=stage_id,
            kind=data["kind"],
            depends_on=list(data.get("depends_on", []) or []),
            inputs=dict(data.get("inputs", {}) or {}),
            outputs=dict(data.get("outputs", {}) or {}),
            params=dict(data.get("params", {}) or {}),
            optional=bool(data.get("optional", False)),
        )
