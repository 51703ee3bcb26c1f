"""Reading count data and writing detection results."""

from pathlib import Path
from typing import Union

import pandas as pd

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def read_counts(path: PathLike):
    """Load an AnnData from ``.h5ad``, or a cells x genes CSV count table.

    Parameters
    ----------
    path : PathLike
        Input file

    Returns
    -------
    AnnData
        Cells x genes counts
    """
    import anndata as ad

    path = Path(path)
    if path.suffix == ".h5ad":
        return ad.read_h5ad(path)
    frame = pd.read_csv(path, index_col=0)
    adata = ad.AnnData(X=frame.to_numpy())
    adata.obs_names = frame.index.astype(str)
    adata.var_names = frame.columns.astype(str)
    return adata


def write_table(df: pd.DataFrame, path: PathLike) -> Path:
    """Write a score table (index kept) ensuring the parent directory exists."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=True)
    return output_path
