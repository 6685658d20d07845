"""Pipeline orchestration: YAML stage definitions, ordering, checkpointed execution."""

from .config import PipelineConfig
from .executor import PipelineExecutor, apply_overrides, build_stage_config
from .logger import ColoredFormatter, PipelineLogger
from .stage import STAGE_KINDS, Stage, StageKind

__all__ = [
    "PipelineConfig",
    "PipelineExecutor",
    "PipelineLogger",
    "ColoredFormatter",
    "Stage",
    "StageKind",
    "STAGE_KINDS",
    "apply_overrides",
    "build_stage_config",
]
