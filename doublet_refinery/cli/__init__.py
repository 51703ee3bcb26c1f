"""Command-line interface for doublet-refinery.

Example Usage
-------------
    # From command line:
    doublet-refinery --help
    doublet-refinery detect --input counts.h5ad --out out/
    doublet-refinery show-config
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
