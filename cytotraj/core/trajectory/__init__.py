"""Trajectory module: cluster tree, pseudotime and intermediate states.

Pipeline Steps
--------------
- kNN graph: symmetric distance-weighted cell graph (``build_knn_graph``)
- Tree: minimum spanning tree over cluster centroids with branch
  assignment (``TreeBuilder``)
- Roots / leaves: start and end cells (``define_root_cells``,
  ``define_leaf_cells``)
- Pseudotime: shortest-path distance from roots (``PseudotimeEstimator``)
- Walks: random walks along increasing pseudotime (``RandomWalker``)

Example Usage
-------------
>>> from cytotraj.core.trajectory import TrajectoryEngine, TrajectoryConfig
>>> config = TrajectoryConfig(root_clusters=["0"], stage_order=["D0", "D2", "D4"])
>>> result = TrajectoryEngine(config).run(adata)
>>> result.cluster_meta.head()
"""

# Configuration classes
from .config import (
    AGGREGATES,
    DIM_TYPES,
    WALK_MODES,
    KNNConfig,
    TreeConfig,
    PseudotimeConfig,
    WalkConfig,
    TrajectoryConfig,
)

# kNN graph
from .knn import (
    build_knn_graph,
    get_representation,
)

# Tree
from .tree import (
    TreeBuilder,
    TreeResult,
    assign_branches,
)

# Pseudotime
from .pseudotime import (
    PseudotimeEstimator,
    PseudotimeResult,
    define_root_cells,
    select_cells,
)

# Random walks
from .walk import (
    RandomWalker,
    WalkResult,
    define_leaf_cells,
    directed_edges,
)

# Engine
from .engine import (
    TrajectoryEngine,
    TrajectoryResult,
    fetch_cluster_meta,
)

__all__ = [
    # Config
    "AGGREGATES",
    "DIM_TYPES",
    "WALK_MODES",
    "KNNConfig",
    "TreeConfig",
    "PseudotimeConfig",
    "WalkConfig",
    "TrajectoryConfig",
    # kNN
    "build_knn_graph",
    "get_representation",
    # Tree
    "TreeBuilder",
    "TreeResult",
    "assign_branches",
    # Pseudotime
    "PseudotimeEstimator",
    "PseudotimeResult",
    "define_root_cells",
    "select_cells",
    # Walks
    "RandomWalker",
    "WalkResult",
    "define_leaf_cells",
    "directed_edges",
    # Engine
    "TrajectoryEngine",
    "TrajectoryResult",
    "fetch_cluster_meta",
]
