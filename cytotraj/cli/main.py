"""Command-line interface for CytoTraj.

Provides CLI commands for the preprocessing, clustering, reduction and
trajectory stages, branch differential expression, and full pipeline runs.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from .. import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("cytotraj")


def _given(**options: Any) -> Dict[str, Any]:
    """Options the user actually set (None and empty tuples dropped)."""
    given = {}
    for name, value in options.items():
        if value is None or value == ():
            continue
        given[name] = list(value) if isinstance(value, tuple) else value
    return given


def _load_config(config_cls, config_path: Optional[str], overrides: Dict[str, Any]):
    """Config from YAML (if given) with nested command line overrides."""
    from cytotraj.pipeline import apply_overrides

    config = config_cls.from_yaml(Path(config_path)) if config_path else config_cls()
    try:
        return apply_overrides(config, overrides)
    except ValueError as e:
        raise click.BadParameter(str(e))


def _run_stage(ctx: click.Context, label: str, func, *args, **kwargs):
    """Call a stage runner; report failures as a non-zero exit."""
    try:
        return func(*args, verbose=ctx.obj["verbose"] or ctx.obj["debug"], **kwargs)
    except Exception as e:
        if ctx.obj["debug"]:
            raise
        click.echo(f"Error: {label} failed: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="cytotraj")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """CytoTraj: trajectory and pseudotime inference for cytometry data.

    Merges per-sample expression matrices, clusters cells, embeds cells
    and clusters, then builds a cluster tree, cell pseudotime and
    random-walk intermediate-state scores.

    Examples:

        # Merge samples listed in a registry
        cytotraj preprocess --registry samples.csv --out out/preprocess

        # Cluster cells with a 10x10 self-organizing map
        cytotraj cluster --input out/preprocess/merged.h5ad --out out/cluster \\
            --method som --xdim 10 --ydim 10

        # Infer the trajectory from cluster 3
        cytotraj trajectory --input out/cluster/clustered.h5ad --out out/traj \\
            --root-clusters 3

        # Run full pipeline from config
        cytotraj pipeline --config pipeline.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--registry", "-r", "registry_path", required=True, type=click.Path(exists=True),
              help="Sample registry CSV (sample_id, stage, matrix_path)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Preprocessing configuration file (YAML)")
@click.option("--transform", type=click.Choice(["cytofAsinh", "arcsinh", "log1p", "none"]),
              help="Intensity transform")
@click.option("--cofactor", type=float, help="Arcsinh cofactor")
@click.option("--sampling-size", type=int, help="Max cells per sample (0 = all)")
@click.option("--seed", type=int, help="Random seed")
@click.option("--log-dir", type=click.Path(), help="Log directory")
@click.pass_context
def preprocess(
    ctx: click.Context,
    registry_path: str,
    output_path: str,
    config: Optional[str],
    transform: Optional[str],
    cofactor: Optional[float],
    sampling_size: Optional[int],
    seed: Optional[int],
    log_dir: Optional[str],
) -> None:
    """Load, transform and merge per-sample matrices."""
    logger = ctx.obj["logger"]
    logger.info("Running preprocessing on registry: %s", registry_path)

    # Import here to avoid slow startup
    from cytotraj.core.preprocessing import PreprocessingConfig
    from cytotraj.core.preprocessing.__main__ import run_preprocessing

    cfg = _load_config(
        PreprocessingConfig,
        config,
        {
            "normalization": _given(transform=transform, cofactor=cofactor),
            "merge": _given(sampling_size=sampling_size, random_seed=seed),
        },
    )
    adata = _run_stage(
        ctx, "Preprocessing", run_preprocessing,
        Path(registry_path), Path(output_path), config=cfg,
        log_dir=Path(log_dir) if log_dir else None,
    )
    click.echo(f"Preprocessing complete: {adata.n_obs} cells, {adata.n_vars} markers")
    click.echo(f"Output saved to: {Path(output_path) / 'merged.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Clustering configuration file (YAML)")
@click.option("--method", "-m",
              type=click.Choice(["som", "kmeans", "clara", "hclust", "leiden", "mclust"]),
              help="Clustering algorithm")
@click.option("--k", type=int, help="Number of clusters")
@click.option("--xdim", type=int, help="SOM grid width")
@click.option("--ydim", type=int, help="SOM grid height")
@click.option("--resolution", type=float, help="Leiden resolution")
@click.option("--layer", help="Expression layer to cluster on")
@click.option("--scale/--no-scale", default=None, help="Standardize markers first")
@click.option("--downsampling-size", type=float,
              help="Centroid cells per cluster (fraction <= 1 or count)")
@click.option("--seed", type=int, help="Random seed")
@click.option("--log-dir", type=click.Path(), help="Log directory")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    method: Optional[str],
    k: Optional[int],
    xdim: Optional[int],
    ydim: Optional[int],
    resolution: Optional[float],
    layer: Optional[str],
    scale: Optional[bool],
    downsampling_size: Optional[float],
    seed: Optional[int],
    log_dir: Optional[str],
) -> None:
    """Assign cells to clusters and compute cluster centroids."""
    logger = ctx.obj["logger"]
    logger.info("Running clustering on: %s", input_path)

    from cytotraj.core.clustering import ClusteringStageConfig
    from cytotraj.core.clustering.__main__ import run_clustering_stage

    cfg = _load_config(
        ClusteringStageConfig,
        config,
        {
            "clustering": _given(
                method=method, k=k, xdim=xdim, ydim=ydim, resolution=resolution,
                layer=layer, scale=scale, random_seed=seed,
            ),
            "processing": _given(downsampling_size=downsampling_size, random_seed=seed),
        },
    )
    adata = _run_stage(
        ctx, "Clustering", run_clustering_stage,
        Path(input_path), Path(output_path), config=cfg,
        log_dir=Path(log_dir) if log_dir else None,
    )
    n_clusters = adata.obs[cfg.clustering.cluster_key].nunique()
    click.echo(f"Clustering complete: {n_clusters} clusters")
    click.echo(f"Output saved to: {Path(output_path) / 'clustered.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Reduction configuration file (YAML)")
@click.option("--method", "-m", "methods", multiple=True,
              type=click.Choice(["pca", "tsne", "diffmap", "umap"]),
              help="Embedding method (repeatable)")
@click.option("--n-pcs", type=int, help="Principal components")
@click.option("--perplexity", type=float, help="t-SNE perplexity")
@click.option("--n-dcs", type=int, help="Diffusion components")
@click.option("--use-downsampled", is_flag=True, default=None,
              help="Embed only the downsampled cells")
@click.option("--cluster-level", is_flag=True, default=None,
              help="Also embed cluster centroids")
@click.option("--seed", type=int, help="Random seed")
@click.option("--log-dir", type=click.Path(), help="Log directory")
@click.pass_context
def reduce(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    methods: Tuple[str, ...],
    n_pcs: Optional[int],
    perplexity: Optional[float],
    n_dcs: Optional[int],
    use_downsampled: Optional[bool],
    cluster_level: Optional[bool],
    seed: Optional[int],
    log_dir: Optional[str],
) -> None:
    """Compute cell (and optionally cluster) embeddings."""
    logger = ctx.obj["logger"]
    logger.info("Running dimensionality reduction on: %s", input_path)

    from cytotraj.core.reduction import ReductionConfig
    from cytotraj.core.reduction.__main__ import run_reduction_stage

    cfg = _load_config(
        ReductionConfig,
        config,
        _given(
            methods=methods, n_pcs=n_pcs, perplexity=perplexity, n_dcs=n_dcs,
            use_downsampled=use_downsampled or None, cluster_level=cluster_level or None,
            random_seed=seed,
        ),
    )
    adata = _run_stage(
        ctx, "Reduction", run_reduction_stage,
        Path(input_path), Path(output_path), config=cfg,
        log_dir=Path(log_dir) if log_dir else None,
    )
    click.echo(f"Reduction complete: {', '.join(sorted(adata.obsm.keys()))}")
    click.echo(f"Output saved to: {Path(output_path) / 'reduced.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad) with cluster assignments")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Trajectory configuration file (YAML)")
@click.option("--root-clusters", multiple=True, help="Root cluster (repeatable)")
@click.option("--leaf-clusters", multiple=True, help="Leaf cluster (repeatable)")
@click.option("--stage-order", multiple=True, help="Stage label, earliest first (repeatable)")
@click.option("--knn", type=int, help="Neighbors per cell")
@click.option("--use-rep", help="X or an obsm key for the kNN graph")
@click.option("--dim-type", type=click.Choice(["raw", "pca", "tsne", "diffmap", "umap"]),
              help="Space the cluster tree is built in")
@click.option("--aggregate", type=click.Choice(["min", "mean"]),
              help="How distances to root cells are combined")
@click.option("--walks-per-root", type=int, help="Random walks per root cell")
@click.option("--max-steps", type=int, help="Step limit per walk")
@click.option("--n-jobs", type=int, help="Parallel walk workers")
@click.option("--branch-de", is_flag=True, default=None, help="Write branch_de.csv")
@click.option("--seed", type=int, help="Random seed")
@click.option("--log-dir", type=click.Path(), help="Log directory")
@click.pass_context
def trajectory(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    root_clusters: Tuple[str, ...],
    leaf_clusters: Tuple[str, ...],
    stage_order: Tuple[str, ...],
    knn: Optional[int],
    use_rep: Optional[str],
    dim_type: Optional[str],
    aggregate: Optional[str],
    walks_per_root: Optional[int],
    max_steps: Optional[int],
    n_jobs: Optional[int],
    branch_de: Optional[bool],
    seed: Optional[int],
    log_dir: Optional[str],
) -> None:
    """Build the cluster tree, pseudotime and intermediate-state walks."""
    logger = ctx.obj["logger"]
    logger.info("Running trajectory inference on: %s", input_path)

    from cytotraj.core.trajectory import TrajectoryConfig
    from cytotraj.core.trajectory.__main__ import run_trajectory_stage

    overrides = _given(
        root_clusters=root_clusters, leaf_clusters=leaf_clusters,
        stage_order=stage_order, branch_de=branch_de or None,
    )
    overrides.update(
        {
            "knn": _given(knn=knn, use_rep=use_rep),
            "tree": _given(dim_type=dim_type),
            "pseudotime": _given(aggregate=aggregate),
            "walk": _given(
                walks_per_root=walks_per_root, max_steps=max_steps,
                n_jobs=n_jobs, random_seed=seed,
            ),
        }
    )
    cfg = _load_config(TrajectoryConfig, config, overrides)
    adata = _run_stage(
        ctx, "Trajectory", run_trajectory_stage,
        Path(input_path), Path(output_path), config=cfg,
        log_dir=Path(log_dir) if log_dir else None,
    )
    n_intermediate = int(adata.obs["is_intermediate"].sum())
    click.echo(f"Trajectory complete: {n_intermediate} intermediate cells")
    click.echo(f"Output saved to: {Path(output_path) / 'trajectory.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output CSV file")
@click.option("--groupby", default="branch_id", help="obs column with group labels")
@click.option("--group", "groups", multiple=True, help="Group to test (repeatable)")
@click.option("--reference", default="rest", help="Reference group or 'rest'")
@click.option("--method", default="wilcoxon",
              type=click.Choice(["wilcoxon", "t-test", "t-test_overestim_var", "logreg"]),
              help="Test method")
@click.option("--n-genes", type=int, default=10, help="Markers reported per group")
@click.pass_context
def diff(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    groupby: str,
    groups: Tuple[str, ...],
    reference: str,
    method: str,
    n_genes: int,
) -> None:
    """Rank markers that distinguish branches (or any obs grouping)."""
    logger = ctx.obj["logger"]
    logger.info("Running differential expression on: %s", input_path)

    import anndata as ad
    from cytotraj.core.clustering import BranchDERunner
    from cytotraj.io.csv import write_dataframe

    adata = ad.read_h5ad(input_path)
    try:
        result = BranchDERunner(logger=logger).run_diff(
            adata,
            groupby=groupby,
            groups=list(groups) or None,
            reference=reference,
            method=method,
            n_genes=n_genes,
        )
    except (KeyError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    write_dataframe(result.to_frame(), output_file)
    click.echo(f"Differential expression complete: {len(result.group_markers)} groups")
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--start-stage", help="Stage to start from")
@click.option("--end-stage", help="Stage to end at")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.option("--force", is_flag=True, help="Ignore checkpoint and re-run all stages")
@click.option("--resume", is_flag=True, help="Resume from last completed stage")
@click.pass_context
def pipeline(
    ctx: click.Context,
    config: str,
    start_stage: Optional[str],
    end_stage: Optional[str],
    dry_run: bool,
    force: bool,
    resume: bool,
) -> None:
    """Run full pipeline from configuration.

    Executes pipeline stages in order with dependency resolution,
    checkpoint support, and detailed logging.
    """
    logger = ctx.obj["logger"]
    verbose = ctx.obj["verbose"] or ctx.obj["debug"]

    from cytotraj.pipeline import (
        PipelineConfig,
        PipelineExecutor,
        PipelineLogger,
    )

    logger.info("Loading pipeline config: %s", config)
    pipeline_config = PipelineConfig(config)
    try:
        pipeline_config.load()
        pipeline_config.parse_stages()
    except (KeyError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    valid, errors = pipeline_config.validate_dependencies()
    if not valid:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    order = pipeline_config.get_execution_order()
    click.echo(f"Pipeline stages: {' -> '.join(order)}")

    if dry_run:
        click.echo("Dry run - no stages will be executed")
        for stage_id in order:
            stage = pipeline_config.stages[stage_id]
            click.echo(f"  {stage_id}: {' '.join(stage.get_command())}")
        return

    log_dir = pipeline_config.output_dir / "logs"
    pipeline_logger = PipelineLogger(log_dir, log_level="DEBUG" if verbose else "INFO")
    pipeline_logger.setup()

    executor = PipelineExecutor(pipeline_config, pipeline_logger, verbose=verbose)

    if resume and not force:
        resume_stage = executor.get_resume_stage()
        if resume_stage:
            click.echo(f"Resuming from stage: {resume_stage}")
            start_stage = resume_stage

    try:
        exit_code = executor.run(
            start_stage=start_stage,
            end_stage=end_stage,
            force=force,
        )
    finally:
        pipeline_logger.close()

    if exit_code == 0:
        click.echo("Pipeline completed successfully")
    else:
        click.echo(f"Pipeline failed with exit code {exit_code}", err=True)
        sys.exit(exit_code)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
