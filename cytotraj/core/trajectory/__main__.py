"""Trajectory module CLI runner.

Enables running trajectory inference as:
    python -m cytotraj.core.trajectory --input <h5ad> --output <dir> --root-clusters 0

Usage Examples:
    # Tree on t-SNE centroids, roots from cluster 4
    python -m cytotraj.core.trajectory \\
        --input output/reduce/reduced.h5ad \\
        --output output/trajectory \\
        --dim-type tsne --root-clusters 4

    # Roots inferred from the earliest stage, branch DE table
    python -m cytotraj.core.trajectory \\
        --input output/reduce/reduced.h5ad \\
        --output output/trajectory \\
        --stage-order D0 D2 D4 D6 --branch-de \\
        --walks-per-root 20 --n-jobs 8
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from ...io.csv import ensure_output_dir, write_dataframe
from ...io.logging import log_yaml, setup_stage_logger
from ..clustering.de import BranchDERunner
from .config import AGGREGATES, DIM_TYPES, WALK_MODES, TrajectoryConfig
from .engine import TrajectoryEngine


def run_trajectory_stage(
    input_path: Path,
    output_dir: Path,
    config: Optional[TrajectoryConfig] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> "anndata.AnnData":
    """Run trajectory inference on a clustered (and reduced) AnnData.

    Parameters
    ----------
    input_path : Path
        Input AnnData (.h5ad) with cluster assignments
    output_dir : Path
        Output directory; receives trajectory.h5ad, cluster_meta.csv,
        tree_edges.csv and, with ``branch_de``, branch_de.csv
    config : TrajectoryConfig, optional
        Trajectory configuration
    verbose : bool
        Enable verbose logging
    log_dir : Path, optional
        Directory for log file

    Returns
    -------
    anndata.AnnData
        AnnData with pseudotime, branch and walk annotations
    """
    import anndata as ad

    logger = setup_stage_logger(
        "cytotraj.trajectory", verbose, log_dir=log_dir, log_filename="trajectory.log"
    )
    config = config or TrajectoryConfig()
    output_dir = ensure_output_dir(output_dir)
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input AnnData not found: {input_path}")
    start = time.time()

    logger.info("Trajectory inference")
    logger.info("Input: %s", input_path)
    logger.info("Output: %s", output_dir)
    logger.info(
        "kNN: k=%d on %s; tree on %s (cluster_level=%s)",
        config.knn.knn,
        config.knn.use_rep,
        config.tree.dim_type,
        config.tree.cluster_level,
    )

    adata = ad.read_h5ad(input_path)
    logger.info("Loaded: %s cells, %d markers", f"{adata.n_obs:,}", adata.n_vars)

    engine = TrajectoryEngine(config, logger=logger)
    result = engine.run(adata)

    write_dataframe(result.cluster_meta, output_dir / "cluster_meta.csv")
    write_dataframe(result.tree.edges, output_dir / "tree_edges.csv")

    if config.branch_de:
        try:
            de = BranchDERunner(logger=logger).run_diff(adata, groupby=config.tree.branch_key)
            write_dataframe(de.to_frame(), output_dir / "branch_de.csv")
        except ValueError as e:
            logger.warning("Branch differential expression skipped: %s", e)

    out_path = output_dir / "trajectory.h5ad"
    adata.write_h5ad(out_path)

    elapsed = time.time() - start
    logger.info("Saved: %s", out_path)
    logger.info("Trajectory complete in %.1fs", elapsed)
    log_yaml(
        output_dir / "run_record.yaml",
        {
            "stage": "trajectory",
            "input": str(input_path),
            "config": config.to_dict(),
            "root_clusters": result.root_clusters,
            "leaf_clusters": result.leaf_clusters,
            "n_branches": result.tree.n_branches,
            "n_unreachable": result.pseudotime.n_unreachable,
            "n_successful_walks": result.walk.n_success,
            "stage_concordance": result.stage_concordance,
            "elapsed_seconds": round(elapsed, 2),
        },
    )
    return adata


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""
    parser = argparse.ArgumentParser(
        description="Cluster tree, pseudotime and intermediate-state walks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--input", type=Path, required=True, help="Input h5ad")
    parser.add_argument("--output", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--root-clusters", nargs="+", default=None, help="Root clusters")
    parser.add_argument("--leaf-clusters", nargs="+", default=None, help="Leaf clusters")
    parser.add_argument("--stage-order", nargs="+", default=None, help="Stages, earliest first")
    parser.add_argument("--knn", type=int, default=None, help="Neighbors per cell")
    parser.add_argument("--use-rep", type=str, default=None, help="X or an obsm key")
    parser.add_argument("--dim-type", choices=DIM_TYPES, default=None, help="Tree space")
    parser.add_argument("--cluster-level", action="store_true", help="Use cluster embeddings")
    parser.add_argument("--aggregate", choices=AGGREGATES, default=None, help="Root aggregate")
    parser.add_argument("--walks-per-root", type=int, default=None, help="Walks per root cell")
    parser.add_argument("--max-steps", type=int, default=None, help="Step limit per walk")
    parser.add_argument("--mode", choices=WALK_MODES, default=None, help="Walk mode")
    parser.add_argument("--backward", action="store_true", help="Also walk leaves to roots")
    parser.add_argument("--n-jobs", type=int, default=None, help="Parallel workers")
    parser.add_argument("--branch-de", action="store_true", help="Write branch_de.csv")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-dir", type=Path, default=None, help="Log directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> TrajectoryConfig:
    """Build config from YAML (if given) with command line overrides."""
    config = TrajectoryConfig.from_yaml(args.config) if args.config else TrajectoryConfig()
    if args.root_clusters is not None:
        config.root_clusters = [str(c) for c in args.root_clusters]
    if args.leaf_clusters is not None:
        config.leaf_clusters = [str(c) for c in args.leaf_clusters]
    if args.stage_order is not None:
        config.stage_order = [str(s) for s in args.stage_order]
    if args.knn is not None:
        config.knn.knn = args.knn
    if args.use_rep is not None:
        config.knn.use_rep = args.use_rep
    if args.dim_type is not None:
        config.tree.dim_type = args.dim_type
    if args.cluster_level:
        config.tree.cluster_level = True
    if args.aggregate is not None:
        config.pseudotime.aggregate = args.aggregate
    if args.walks_per_root is not None:
        config.walk.walks_per_root = args.walks_per_root
    if args.max_steps is not None:
        config.walk.max_steps = args.max_steps
    if args.mode is not None:
        config.walk.mode = args.mode
    if args.backward:
        config.walk.backward = True
    if args.n_jobs is not None:
        config.walk.n_jobs = args.n_jobs
    if args.branch_de:
        config.branch_de = True
    if args.seed is not None:
        config.walk.random_seed = args.seed
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_trajectory_stage(
            input_path=args.input,
            output_dir=args.output,
            config=config_from_args(args),
            verbose=args.verbose,
            log_dir=args.log_dir,
        )
        return 0
    except Exception as e:
        logging.getLogger("cytotraj.trajectory").error("Trajectory failed: %s", e)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
