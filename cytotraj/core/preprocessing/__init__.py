"""Preprocessing module for loading and merging cytometry samples.

Provides functions for loading per-sample expression matrices listed in a
sample registry, intensity transformation, and merging into one AnnData
object labelled with each sample's stage.

Pipeline Steps
--------------
- Loader: registry and matrix loading with validation
- Normalization: variance stabilization (log1p, arcsinh, cytofAsinh)
- Merge: marker intersection, per-sample downsampling, AnnData assembly

Example Usage
-------------
>>> from cytotraj.core.preprocessing import (
...     DataLoader, LoaderConfig,
...     Normalizer, NormalizationConfig,
...     DataMerger, MergeConfig,
... )
>>> loader = DataLoader(LoaderConfig())
>>> registry = loader.load_sample_registry("samples.csv")
>>> results = loader.load_registry_samples(registry)
>>> normalizer = Normalizer(NormalizationConfig(transform="arcsinh", cofactor=5))
>>> norm = normalizer.normalize_sample(results[0].matrix, results[0].sample_id)
"""

# Configuration classes
from .config import (
    LoaderConfig,
    NormalizationConfig,
    MergeConfig,
    PreprocessingConfig,
)

# Data loading
from .loader import (
    DataLoader,
    LoadResult,
)

# Normalization
from .normalization import (
    Normalizer,
    NormalizationResult,
    TransformSpec,
    TRANSFORMS,
)

# Merge
from .merge import (
    DataMerger,
    MergeResult,
)

__all__ = [
    # Config
    "LoaderConfig",
    "NormalizationConfig",
    "MergeConfig",
    "PreprocessingConfig",
    # Loader
    "DataLoader",
    "LoadResult",
    # Normalization
    "Normalizer",
    "NormalizationResult",
    "TransformSpec",
    "TRANSFORMS",
    # Merge
    "DataMerger",
    "MergeResult",
]
