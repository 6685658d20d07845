"""Command-line interface for CytoTraj.

Provides CLI commands for running pipeline stages.

Example Usage
-------------
    # From command line:
    cytotraj --help
    cytotraj preprocess --registry samples.csv --out out/preprocess
    cytotraj cluster --input out/preprocess/merged.h5ad --out out/cluster --method som
    cytotraj trajectory --input out/reduce/reduced.h5ad --out out/trajectory --root-clusters 3
    cytotraj pipeline --config pipeline.yaml
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
