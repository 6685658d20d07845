"""Preprocessing module CLI runner.

Enables running the preprocessing stage as:
    python -m cytotraj.core.preprocessing --registry <csv> --output <dir>

Usage Examples:
    # Default CyTOF transform, keep all cells
    python -m cytotraj.core.preprocessing \\
        --registry data/samples.csv \\
        --output output/preprocess

    # Flow data: arcsinh with cofactor 150, 5000 cells per sample
    python -m cytotraj.core.preprocessing \\
        --registry data/samples.csv \\
        --output output/preprocess \\
        --transform arcsinh --cofactor 150 \\
        --sampling-size 5000
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

from ...io.csv import ensure_output_dir, write_dataframe
from ...io.logging import log_yaml, setup_stage_logger
from .config import PreprocessingConfig
from .loader import DataLoader
from .merge import DataMerger
from .normalization import TRANSFORMS, Normalizer


def _registry_metadata(registry: pd.DataFrame, cfg_loader) -> Dict[str, Dict[str, Any]]:
    """Per-sample obs metadata from the registry columns.

    Conversion is per column so every obs column keeps one dtype when
    written to h5ad: numeric and boolean columns keep their dtype (blanks
    stay NaN), everything else becomes str with blanks as "".
    """
    skip = (cfg_loader.sample_id_col, cfg_loader.matrix_path_col, cfg_loader.stage_col)
    columns = {}
    for col in registry.columns:
        if col in skip:
            continue
        values = registry[col]
        if not (is_bool_dtype(values) or is_numeric_dtype(values)):
            values = values.where(values.notna(), "").astype(str)
        columns[str(col)] = values

    sample_metadata = {}
    for i, sample_id in enumerate(registry[cfg_loader.sample_id_col].astype(str)):
        meta = {key: values.iloc[i] for key, values in columns.items()}
        meta["stage"] = str(registry[cfg_loader.stage_col].iloc[i])
        sample_metadata[sample_id] = meta
    return sample_metadata


def run_preprocessing(
    registry_path: Path,
    output_dir: Path,
    config: Optional[PreprocessingConfig] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> "anndata.AnnData":
    """Run preprocessing: load, transform and merge all samples.

    Parameters
    ----------
    registry_path : Path
        Sample registry CSV (sample id, matrix path, stage, metadata)
    output_dir : Path
        Output directory; receives merged.h5ad and load_report.csv
    config : PreprocessingConfig, optional
        Preprocessing configuration
    verbose : bool
        Enable verbose logging
    log_dir : Path, optional
        Directory for log file

    Returns
    -------
    anndata.AnnData
        Merged AnnData with obs["sample_id"] and obs["stage"]

    Raises
    ------
    ValueError
        If no sample could be loaded
    """
    logger = setup_stage_logger(
        "cytotraj.preprocessing", verbose, log_dir=log_dir, log_filename="preprocessing.log"
    )
    config = config or PreprocessingConfig()
    output_dir = ensure_output_dir(output_dir)
    start = time.time()

    logger.info("Preprocessing")
    logger.info("Registry: %s", registry_path)
    logger.info("Output: %s", output_dir)
    logger.info(
        "Transform: %s (cofactor=%s), sampling_size=%d",
        config.normalization.transform,
        config.normalization.cofactor,
        config.merge.sampling_size,
    )

    loader = DataLoader(config.loader)
    registry = loader.load_sample_registry(registry_path)
    logger.info("Registry: %d samples", len(registry))

    results = loader.load_registry_samples(registry)
    report = pd.DataFrame([r.to_dict() for r in results])
    write_dataframe(report, output_dir / "load_report.csv")

    usable = [r for r in results if r.usable]
    for r in results:
        if not r.usable:
            logger.warning("Skipping sample %s: %s", r.sample_id, ";".join(r.issues))
        elif r.issues:
            logger.warning("Sample %s: %s", r.sample_id, ";".join(r.issues))
    if not usable:
        raise ValueError("No usable samples in registry")

    normalizer = Normalizer(config.normalization)
    matrices: Dict[str, pd.DataFrame] = {}
    raw_matrices: Dict[str, pd.DataFrame] = {}
    for r in usable:
        norm = normalizer.normalize_sample(r.matrix, r.sample_id)
        matrices[r.sample_id] = norm.normalized_matrix
        raw_matrices[r.sample_id] = r.matrix

    sample_metadata = _registry_metadata(registry, config.loader)

    merger = DataMerger(config.merge, logger=logger)
    merged = merger.merge_samples(matrices, sample_metadata, raw_matrices=raw_matrices)
    adata = merged.adata

    adata.uns["preprocessing"] = {
        "transform": config.normalization.transform,
        "transform_label": TRANSFORMS[config.normalization.transform].label,
        "cofactor": float(config.normalization.cofactor),
        "sampling_size": int(config.merge.sampling_size),
        "dropped_markers": list(merged.dropped_markers),
        "n_samples": int(merged.n_samples),
    }

    out_path = output_dir / "merged.h5ad"
    adata.write_h5ad(out_path)

    elapsed = time.time() - start
    logger.info(
        "Merged %d cells x %d markers from %d samples", adata.n_obs, adata.n_vars, merged.n_samples
    )
    logger.info("Saved: %s", out_path)
    logger.info("Preprocessing complete in %.1fs", elapsed)
    log_yaml(
        output_dir / "run_record.yaml",
        {
            "stage": "preprocessing",
            "registry": str(registry_path),
            "config": config.to_dict(),
            "n_cells": adata.n_obs,
            "n_markers": adata.n_vars,
            "sampled_counts": merged.sampled_counts,
            "elapsed_seconds": round(elapsed, 2),
        },
    )
    return adata


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""
    parser = argparse.ArgumentParser(
        description="Load, transform and merge cytometry samples",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--registry", type=Path, required=True, help="Sample registry CSV")
    parser.add_argument("--output", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument(
        "--transform",
        choices=sorted(TRANSFORMS.keys()),
        default=None,
        help="Intensity transform (default: cytofAsinh)",
    )
    parser.add_argument("--cofactor", type=float, default=None, help="Arcsinh cofactor")
    parser.add_argument(
        "--sampling-size", type=int, default=None, help="Max cells per sample (0 = all)"
    )
    parser.add_argument("--stage-col", type=str, default=None, help="Registry stage column")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-dir", type=Path, default=None, help="Log directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> PreprocessingConfig:
    """Build config from YAML (if given) with command line overrides."""
    config = PreprocessingConfig.from_yaml(args.config) if args.config else PreprocessingConfig()
    if args.transform is not None:
        config.normalization.transform = args.transform
    if args.cofactor is not None:
        config.normalization.cofactor = args.cofactor
    if args.sampling_size is not None:
        config.merge.sampling_size = args.sampling_size
    if args.stage_col is not None:
        config.loader.stage_col = args.stage_col
    if args.seed is not None:
        config.merge.random_seed = args.seed
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_preprocessing(
            registry_path=args.registry,
            output_dir=args.output,
            config=config_from_args(args),
            verbose=args.verbose,
            log_dir=args.log_dir,
        )
        return 0
    except Exception as e:
        logging.getLogger("cytotraj.preprocessing").error("Preprocessing failed: %s", e)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
