"""Clustering module CLI runner.

Enables running the clustering stage as:
    python -m cytotraj.core.clustering --input <h5ad> --output <dir>

Usage Examples:
    # FlowSOM-style clustering on a 10x10 grid
    python -m cytotraj.core.clustering \\
        --input output/preprocess/merged.h5ad \\
        --output output/cluster \\
        --method som --xdim 10 --ydim 10

    # k-means with 30 clusters, keeping 20% of each cluster
    python -m cytotraj.core.clustering \\
        --input output/preprocess/merged.h5ad \\
        --output output/cluster \\
        --method kmeans --k 30 --downsampling-size 0.2

    # Graph-based clustering
    python -m cytotraj.core.clustering \\
        --input output/preprocess/merged.h5ad \\
        --output output/cluster \\
        --method leiden --resolution 0.8
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from ...io.csv import ensure_output_dir, write_dataframe
from ...io.logging import log_yaml, setup_stage_logger
from .config import CLUSTERING_METHODS, ClusteringStageConfig
from .engine import ClusteringEngine


def run_clustering_stage(
    input_path: Path,
    output_dir: Path,
    config: Optional[ClusteringStageConfig] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> "anndata.AnnData":
    """Run clustering: layer selection, clustering, cluster processing.

    Parameters
    ----------
    input_path : Path
        Merged AnnData (.h5ad) from preprocessing
    output_dir : Path
        Output directory; receives clustered.h5ad and cluster_sizes.csv
    config : ClusteringStageConfig, optional
        Clustering configuration
    verbose : bool
        Enable verbose logging
    log_dir : Path, optional
        Directory for log file

    Returns
    -------
    anndata.AnnData
        AnnData with cluster assignments and centroids
    """
    import anndata as ad

    logger = setup_stage_logger(
        "cytotraj.clustering", verbose, log_dir=log_dir, log_filename="clustering.log"
    )
    config = config or ClusteringStageConfig()
    output_dir = ensure_output_dir(output_dir)
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input AnnData not found: {input_path}")
    start = time.time()

    cfg = config.clustering
    logger.info("Clustering")
    logger.info("Input: %s", input_path)
    logger.info("Output: %s", output_dir)
    logger.info("Method: %s (k=%d, grid=%dx%d)", cfg.method, cfg.k, cfg.xdim, cfg.ydim)

    adata = ad.read_h5ad(input_path)
    logger.info("Loaded: %s cells, %d markers", f"{adata.n_obs:,}", adata.n_vars)

    engine = ClusteringEngine(config, logger=logger)
    engine.select_layer(adata, cfg.layer)
    adata, dropped = engine.filter_low_variance_markers(adata)

    result = engine.run_clustering(adata)
    result.dropped_markers = dropped
    engine.process_clusters(adata, cluster_key=result.cluster_key)

    sizes = pd.DataFrame(
        {
            result.cluster_key: list(result.cluster_sizes.keys()),
            "n_cells": list(result.cluster_sizes.values()),
        }
    )
    sizes["fraction"] = sizes["n_cells"] / max(adata.n_obs, 1)
    write_dataframe(sizes, output_dir / "cluster_sizes.csv")

    out_path = output_dir / "clustered.h5ad"
    adata.write_h5ad(out_path)

    elapsed = time.time() - start
    logger.info("Saved: %s", out_path)
    logger.info("Clustering complete in %.1fs (%d clusters)", elapsed, result.n_clusters)
    log_yaml(
        output_dir / "run_record.yaml",
        {
            "stage": "clustering",
            "input": str(input_path),
            "config": config.to_dict(),
            "n_clusters": result.n_clusters,
            "dropped_markers": dropped,
            "elapsed_seconds": round(elapsed, 2),
        },
    )
    return adata


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""
    parser = argparse.ArgumentParser(
        description="Cluster cells of a merged cytometry AnnData",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--input", type=Path, required=True, help="Input h5ad")
    parser.add_argument("--output", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--method", choices=CLUSTERING_METHODS, default=None, help="Algorithm")
    parser.add_argument("--k", type=int, default=None, help="Number of clusters")
    parser.add_argument("--xdim", type=int, default=None, help="SOM grid width")
    parser.add_argument("--ydim", type=int, default=None, help="SOM grid height")
    parser.add_argument("--rlen", type=int, default=None, help="SOM training epochs")
    parser.add_argument("--resolution", type=float, default=None, help="Leiden resolution")
    parser.add_argument("--layer", type=str, default=None, help="Layer to cluster on")
    parser.add_argument("--scale", action="store_true", help="Standardize markers first")
    parser.add_argument(
        "--downsampling-size",
        type=float,
        default=None,
        help="Fraction (<=1) or count of cells kept per cluster",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-dir", type=Path, default=None, help="Log directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> ClusteringStageConfig:
    """Build config from YAML (if given) with command line overrides."""
    config = ClusteringStageConfig.from_yaml(args.config) if args.config else ClusteringStageConfig()
    cfg = config.clustering
    for name in ("method", "k", "xdim", "ydim", "rlen", "resolution", "layer"):
        value = getattr(args, name)
        if value is not None:
            setattr(cfg, name, value)
    if args.scale:
        cfg.scale = True
    if args.downsampling_size is not None:
        config.processing.downsampling_size = args.downsampling_size
    if args.seed is not None:
        cfg.random_seed = args.seed
        config.processing.random_seed = args.seed
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_clustering_stage(
            input_path=args.input,
            output_dir=args.output,
            config=config_from_args(args),
            verbose=args.verbose,
            log_dir=args.log_dir,
        )
        return 0
    except Exception as e:
        logging.getLogger("cytotraj.clustering").error("Clustering failed: %s", e)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
