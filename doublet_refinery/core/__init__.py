"""Core computational modules for doublet-refinery.

This package contains the analysis engines:
- clustering: fast clustering of real cells (Leiden or k-means)
- detection: artificial doublets, neighborhood features, classification
  and thresholding
"""
