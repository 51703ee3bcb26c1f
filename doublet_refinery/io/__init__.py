"""I/O utilities for doublet-refinery.

Provides run logging, count loading and result writing.
"""

from .logging import get_logger, get_timestamped_log_path, log_yaml, to_builtin
from .outputs import ensure_output_dir, read_counts, write_table

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_yaml",
    "to_builtin",
    # Files
    "ensure_output_dir",
    "read_counts",
    "write_table",
]
