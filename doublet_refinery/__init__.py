"""doublet-refinery: doublet detection for single-cell count data.

This package provides tools for:
- Synthesizing artificial doublets from clustered real cells
- Characterizing cell neighborhoods in a joint embedding
- Scoring cells with an iteratively trained gradient-boosted classifier
- Calling doublets with thresholds aware of the expected doublet rate

Example usage:
    >>> from doublet_refinery import DoubletDetectionEngine, DetectionConfig
    >>>
    >>> engine = DoubletDetectionEngine(DetectionConfig.from_yaml("doublets.yaml"))
    >>> adata = engine.run(adata, clusters="leiden", samples="sample")
    >>> adata.obs["doublet_class"].value_counts()
"""

__version__ = "0.1.0"

from .core.detection import DetectionConfig, DoubletDetectionEngine, find_doublets

__all__ = [
    "__version__",
    "DetectionConfig",
    "DoubletDetectionEngine",
    "find_doublets",
]
