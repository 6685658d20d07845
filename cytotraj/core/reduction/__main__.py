"""Reduction module CLI runner.

Enables running dimensionality reduction as:
    python -m cytotraj.core.reduction --input <h5ad> --output <dir>

Usage Examples:
    python -m cytotraj.core.reduction \\
        --input output/cluster/clustered.h5ad \\
        --output output/reduce \\
        --methods pca tsne diffmap

    # Embed only the downsampled cells, plus cluster centroids
    python -m cytotraj.core.reduction \\
        --input output/cluster/clustered.h5ad \\
        --output output/reduce \\
        --use-downsampled --cluster-level
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from ...io.csv import ensure_output_dir
from ...io.logging import log_yaml, setup_stage_logger
from .config import REDUCTION_METHODS, ReductionConfig
from .engine import ReductionEngine


def run_reduction_stage(
    input_path: Path,
    output_dir: Path,
    config: Optional[ReductionConfig] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> "anndata.AnnData":
    """Run dimensionality reduction on a clustered AnnData.

    Parameters
    ----------
    input_path : Path
        Clustered AnnData (.h5ad)
    output_dir : Path
        Output directory; receives reduced.h5ad
    config : ReductionConfig, optional
        Reduction configuration
    verbose : bool
        Enable verbose logging
    log_dir : Path, optional
        Directory for log file

    Returns
    -------
    anndata.AnnData
        AnnData with obsm embeddings
    """
    import anndata as ad

    logger = setup_stage_logger(
        "cytotraj.reduction", verbose, log_dir=log_dir, log_filename="reduction.log"
    )
    config = config or ReductionConfig()
    output_dir = ensure_output_dir(output_dir)
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input AnnData not found: {input_path}")
    start = time.time()

    logger.info("Dimensionality reduction")
    logger.info("Input: %s", input_path)
    logger.info("Methods: %s", ", ".join(config.methods))

    adata = ad.read_h5ad(input_path)
    logger.info("Loaded: %s cells, %d markers", f"{adata.n_obs:,}", adata.n_vars)

    engine = ReductionEngine(config, logger=logger)
    result = engine.run(adata)
    if config.cluster_level:
        engine.run_cluster_reduction(adata, cluster_key=config.cluster_key)

    out_path = output_dir / "reduced.h5ad"
    adata.write_h5ad(out_path)

    elapsed = time.time() - start
    logger.info("Saved: %s", out_path)
    logger.info("Reduction complete in %.1fs", elapsed)
    log_yaml(
        output_dir / "run_record.yaml",
        {
            "stage": "reduction",
            "input": str(input_path),
            "config": config.to_dict(),
            "embedding_keys": result.embedding_keys,
            "n_embedded": result.n_embedded,
            "elapsed_seconds": round(elapsed, 2),
        },
    )
    return adata


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser."""
    parser = argparse.ArgumentParser(
        description="Compute cell and cluster embeddings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--input", type=Path, required=True, help="Input h5ad")
    parser.add_argument("--output", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument(
        "--methods", nargs="+", choices=REDUCTION_METHODS, default=None, help="Methods to run"
    )
    parser.add_argument("--n-pcs", type=int, default=None, help="Principal components")
    parser.add_argument("--perplexity", type=float, default=None, help="t-SNE perplexity")
    parser.add_argument("--n-dcs", type=int, default=None, help="Diffusion components")
    parser.add_argument("--neighbors-k", type=int, default=None, help="k for neighbor graph")
    parser.add_argument("--use-downsampled", action="store_true", help="Embed downsampled cells")
    parser.add_argument("--cluster-level", action="store_true", help="Embed cluster centroids")
    parser.add_argument("--cluster-key", type=str, default=None, help="Cluster column")
    parser.add_argument("--layer", type=str, default=None, help="Layer to embed")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-dir", type=Path, default=None, help="Log directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> ReductionConfig:
    """Build config from YAML (if given) with command line overrides."""
    config = ReductionConfig.from_yaml(args.config) if args.config else ReductionConfig()
    overrides = {
        "methods": args.methods,
        "n_pcs": args.n_pcs,
        "perplexity": args.perplexity,
        "n_dcs": args.n_dcs,
        "neighbors_k": args.neighbors_k,
        "cluster_key": args.cluster_key,
        "layer": args.layer,
        "random_seed": args.seed,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    if args.use_downsampled:
        config.use_downsampled = True
    if args.cluster_level:
        config.cluster_level = True
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        run_reduction_stage(
            input_path=args.input,
            output_dir=args.output,
            config=config_from_args(args),
            verbose=args.verbose,
            log_dir=args.log_dir,
        )
        return 0
    except Exception as e:
        logging.getLogger("cytotraj.reduction").error("Reduction failed: %s", e)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
