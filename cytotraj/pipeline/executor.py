"""Pipeline execution engine with checkpoint support."""

import dataclasses
import json
import time
from datetime import datetime
from importlib import import_module
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..io.logging import log_json
from .config import PipelineConfig
from .logger import PipelineLogger
from .stage import Stage

STATE_FILENAME = ".cytotraj_state.json"
HISTORY_FILENAME = "stage_history.jsonl"

# kind -> (config class, stage runner), as "module:attribute" paths
STAGE_RUNNERS: Dict[str, Tuple[str, str]] = {
    "preprocess": (
        "cytotraj.core.preprocessing.config:PreprocessingConfig",
        "cytotraj.core.preprocessing.__main__:run_preprocessing",
    ),
    "cluster": (
        "cytotraj.core.clustering.config:ClusteringStageConfig",
        "cytotraj.core.clustering.__main__:run_clustering_stage",
    ),
    "reduce": (
        "cytotraj.core.reduction.config:ReductionConfig",
        "cytotraj.core.reduction.__main__:run_reduction_stage",
    ),
    "trajectory": (
        "cytotraj.core.trajectory.config:TrajectoryConfig",
        "cytotraj.core.trajectory.__main__:run_trajectory_stage",
    ),
}


def _load_attribute(path: str) -> Any:
    module_name, attribute = path.split(":")
    return getattr(import_module(module_name), attribute)


def apply_overrides(config: Any, overrides: Dict[str, Any], prefix: str = "") -> Any:
    """Apply nested dictionary overrides to a dataclass config in place.

    Nested dataclass fields take nested dictionaries; everything else is
    assigned as is.

    Raises
    ------
    ValueError
        If a key is not a field of the config
    """
    names = {f.name for f in dataclasses.fields(config)}
    for key, value in overrides.items():
        if key not in names:
            raise ValueError(f"Unknown config field '{prefix}{key}'")
        current = getattr(config, key)
        if dataclasses.is_dataclass(current) and isinstance(value, dict):
            apply_overrides(current, value, prefix=f"{prefix}{key}.")
        else:
            setattr(config, key, value)
    return config


def build_stage_config(stage: Stage) -> Any:
    """Stage config from ``params["config"]`` (if any) plus inline overrides.

    For a trajectory stage, overrides may be given with or without the
    ``trajectory`` section key; other stages take their section names
    (``clustering``, ``processing``, ...) directly.
    """
    config_cls = _load_attribute(STAGE_RUNNERS[stage.kind][0])
    params = dict(stage.params)
    config_path = params.pop("config", None)
    config = config_cls.from_yaml(config_path) if config_path else config_cls()
    if stage.kind == "trajectory" and "trajectory" in params:
        params = params["trajectory"] or {}
    if stage.kind == "reduce" and "reduction" in params:
        params = params["reduction"] or {}
    return apply_overrides(config, params)


class PipelineExecutor:
    """Executes pipeline stages with validation, checkpointing, and error handling.

    Stages run in-process through their stage runners, in dependency
    order. Completed stages are recorded in a JSON state file so an
    interrupted run can resume.

    Parameters
    ----------
    config : PipelineConfig
        Loaded PipelineConfig instance with parsed stages
    logger : PipelineLogger
        Initialized PipelineLogger instance
    state_file : str, optional
        Path to checkpoint state file. Defaults to
        ``<global.output_dir>/.cytotraj_state.json``.
    verbose : bool
        Passed on to stage runners

    Attributes
    ----------
    completed_stages : List[str]
        Successfully completed stage IDs, in completion order

    Example
    -------
    >>> config = PipelineConfig("pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> logger = PipelineLogger("output/logs")
    >>> logger.setup()
    >>> executor = PipelineExecutor(config, logger)
    >>> exit_code = executor.run()
    """

    def __init__(
        self,
        config: PipelineConfig,
        logger: PipelineLogger,
        state_file: Optional[str] = None,
        verbose: bool = False,
    ):
        self.config = config
        self.logger = logger
        self.state_file = (
            Path(state_file) if state_file else config.output_dir / STATE_FILENAME
        )
        self.verbose = verbose
        self.completed_stages: List[str] = []

    def load_state(self) -> None:
        """Load the completed stages of a previous run, if any.

        An unreadable state file is reported and treated as empty.
        """
        if not self.state_file.exists():
            self.logger.log_debug("No checkpoint file found, starting fresh")
            self.completed_stages = []
            return

        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.log_warning(f"Failed to load checkpoint: {e}")
            self.completed_stages = []
            return

        self.completed_stages = list(state.get("completed_stages", []))
        self.logger.log_info(
            f"Loaded checkpoint: {len(self.completed_stages)} stages completed"
        )
        if self.completed_stages:
            self.logger.log_info(f"Last completed: {self.completed_stages[-1]}")

    def save_state(self) -> None:
        """Write completed stages and run metadata to the state file."""
        pipeline_section = self.config.raw_config.get("pipeline", {}) or {}
        state = {
            "completed_stages": self.completed_stages,
            "timestamp": datetime.now().isoformat(),
            "pipeline_name": pipeline_section.get("name", ""),
            "pipeline_version": str(pipeline_section.get("version", "1.0")),
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w") as f:
            json.dump(state, f, indent=2)

    def clear_state(self) -> None:
        """Clear checkpoint state (for a fresh run)."""
        if self.state_file.exists():
            self.state_file.unlink()
            self.logger.log_info("Cleared checkpoint state")
        self.completed_stages = []

    def should_skip_stage(self, stage: Stage) -> bool:
        """True for an optional stage whose inputs or config are missing."""
        if not stage.optional:
            return False
        valid, errors = stage.validate_inputs()
        if not valid:
            self.logger.log_stage_skip(stage.stage_id, "; ".join(errors))
            return True
        return False

    def record_stage(self, stage: Stage, status: str, duration: float, error: str = "") -> None:
        """Append one JSON line per executed stage to the run history."""
        log_json(
            self.logger.log_dir / HISTORY_FILENAME,
            {
                "stage_id": stage.stage_id,
                "kind": stage.kind,
                "status": status,
                "duration_seconds": round(duration, 2),
                "error": error,
                "timestamp": datetime.now().isoformat(),
            },
        )

    def get_runner(self, stage: Stage) -> Callable[..., Any]:
        return _load_attribute(STAGE_RUNNERS[stage.kind][1])

    def execute_stage(self, stage: Stage, dry_run: bool = False) -> int:
        """Execute a single pipeline stage.

        Parameters
        ----------
        stage : Stage
            Stage object to execute
        dry_run : bool
            If True, only show what would be executed

        Returns
        -------
        int
            Exit code (0 = success, 1 = failure)
        """
        if dry_run:
            self.logger.log_info(f"[DRY RUN] Would execute: {' '.join(stage.get_command())}")
            if stage.params:
                self.logger.log_info(f"[DRY RUN]   params: {stage.params}")
            return 0

        if self.should_skip_stage(stage):
            self.completed_stages.append(stage.stage_id)
            self.save_state()
            return 0

        valid, errors = stage.validate_inputs()
        if not valid:
            self.logger.log_error(f"Input validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            return 1

        self.logger.log_stage_start(stage.stage_id, stage.name)
        start_time = time.time()

        try:
            stage_config = build_stage_config(stage)
            runner = self.get_runner(stage)
            runner(
                stage.input_path,
                stage.output_dir,
                config=stage_config,
                verbose=self.verbose,
                log_dir=self.logger.log_dir,
            )
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            self.logger.log_stage_error(stage.stage_id, message)
            self.record_stage(stage, "failed", time.time() - start_time, message)
            return 1

        valid, errors = stage.validate_outputs()
        if not valid:
            self.logger.log_error(f"Output validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            self.record_stage(stage, "failed", time.time() - start_time, "; ".join(errors))
            return 1

        duration = time.time() - start_time
        self.record_stage(stage, "completed", duration)
        self.logger.log_stage_complete(stage.stage_id, duration)
        self.completed_stages.append(stage.stage_id)
        self.save_state()
        return 0

    def run(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> int:
        """Execute pipeline from start_stage to end_stage.

        Parameters
        ----------
        start_stage : str, optional
            Stage ID to start from (default: first stage)
        end_stage : str, optional
            Stage ID to end at (default: last stage)
        dry_run : bool
            If True, show execution plan without running
        force : bool
            If True, ignore checkpoint and re-run all stages

        Returns
        -------
        int
            Exit code (0 = success, non-zero = failure)
        """
        valid, errors = self.config.validate_dependencies()
        if not valid:
            for error in errors:
                self.logger.log_error(error)
            return 1
        order = self.config.get_execution_order()

        if start_stage:
            if start_stage not in order:
                self.logger.log_error(f"Start stage '{start_stage}' not found")
                return 1
            order = order[order.index(start_stage):]

        if end_stage:
            if end_stage not in order:
                self.logger.log_error(f"End stage '{end_stage}' not found")
                return 1
            order = order[: order.index(end_stage) + 1]

        if force and not dry_run:
            self.clear_state()
        else:
            self.load_state()

        self.logger.log_info(f"Pipeline execution plan: {' -> '.join(order)}")
        if dry_run:
            self.logger.log_info("DRY RUN MODE - No stages will be executed")

        for stage_id in order:
            if stage_id in self.completed_stages and not force:
                self.logger.log_stage_skip(stage_id, "already completed")
                continue

            exit_code = self.execute_stage(self.config.stages[stage_id], dry_run)
            if exit_code != 0:
                self.logger.log_error(f"Pipeline failed at stage {stage_id}")
                return exit_code

        self.logger.log_info("Pipeline completed successfully")
        return 0

    def get_resume_stage(self) -> Optional[str]:
        """First stage in execution order not yet completed.

        Returns
        -------
        Optional[str]
            Stage ID to resume from, or None if starting fresh or all complete
        """
        self.load_state()
        if not self.completed_stages:
            return None
        for stage_id in self.config.get_execution_order():
            if stage_id not in self.completed_stages:
                return stage_id
        return None
