"""Exception types raised by the doublet detection engine."""


class DoubletRefineryError(Exception):
    """Base class for doublet detection failures."""

    pass


class InvalidArgumentError(DoubletRefineryError, ValueError):
    """Raised when an input or configuration value fails a precondition."""

    pass


class InsufficientClustersError(DoubletRefineryError):
    """Raised when fewer than two clusters are available for doublet synthesis."""

    def __init__(self, n_clusters: int):
        self.n_clusters = n_clusters
        super().__init__(
            f"Only {n_clusters} cluster(s) available; at least 2 are required. "
            "Consider passing a target cluster count (e.g. clusters=10)."
        )


class PartitionError(DoubletRefineryError):
    """Raised when the pipeline fails for one sample partition."""

    def __init__(self, sample: str, message: str):
        self.sample = sample
        super().__init__(
            f"An error occurred while processing sample '{sample}': {message}"
        )
