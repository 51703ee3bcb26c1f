"""Command-line interface for doublet-refinery.

Provides CLI commands for running doublet detection on count files.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from doublet_refinery import __version__
from doublet_refinery.core.detection.config import SCORE_TYPES


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("doublet_refinery")


def parse_clusters(value: Optional[str]):
    """An integer is a target cluster count, anything else an obs column."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return value


@click.group()
@click.version_option(version=__version__, prog_name="doublet-refinery")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """doublet-refinery: doublet detection for single-cell count data.

    Synthesizes artificial doublets, characterizes cell neighborhoods and
    trains a classifier to score and call doublets.

    Examples:

        # Detect doublets, clustering cells automatically
        doublet-refinery detect -i counts.h5ad -o out/

        # Use existing clusters and process captures separately
        doublet-refinery detect -i counts.h5ad -o out/ --clusters leiden --samples sample

        # Print the default configuration
        doublet-refinery show-config > doublets.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input counts (.h5ad or cells x genes CSV)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Detection configuration file (YAML)")
@click.option("--clusters", default=None,
              help="Cluster column in obs, or a number of clusters for k-means")
@click.option("--samples", default=None, help="Sample column in obs")
@click.option("--known-doublets", default=None, help="Boolean column of known doublets")
@click.option("--dbr", type=float, default=None,
              help="Expected doublet rate (default: 1 percent per thousand cells)")
@click.option("--score", type=click.Choice(SCORE_TYPES), default=None, help="Score type")
@click.option("--return-type", type=click.Choice(["anndata", "table"]), default="anndata",
              help="Write annotated h5ad or the score table (CSV)")
@click.option("--n-workers", type=int, default=None, help="Parallel workers across samples")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.pass_context
def detect(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    clusters: Optional[str],
    samples: Optional[str],
    known_doublets: Optional[str],
    dbr: Optional[float],
    score: Optional[str],
    return_type: str,
    n_workers: Optional[int],
    seed: Optional[int],
) -> None:
    """Detect doublets.

    Writes doublets.h5ad (or doublet_table.csv), a timestamped log and a
    YAML summary of the run to the output directory.
    """
    logger = ctx.obj["logger"]

    # Import here to avoid slow startup
    from doublet_refinery.core.detection import DetectionConfig, DoubletDetectionEngine
    from doublet_refinery.core.detection.errors import DoubletRefineryError
    from doublet_refinery.io import (
        ensure_output_dir,
        get_logger,
        log_yaml,
        read_counts,
        write_table,
    )

    out_dir = ensure_output_dir(output_path)
    run_logger, log_path = get_logger(
        "doublet_refinery.detect",
        out_dir / "doublets.log",
        level=logging.DEBUG if ctx.obj["debug"] else logging.INFO,
    )

    cfg = DetectionConfig.from_yaml(Path(config)) if config else DetectionConfig()
    if dbr is not None:
        cfg.threshold.dbr = dbr
    if score is not None:
        cfg.training.score = score
    if n_workers is not None:
        cfg.n_workers = n_workers
    if seed is not None:
        cfg.random_seed = seed

    logger.info("Loading counts from %s", input_path)
    adata = read_counts(input_path)
    run_logger.info("Loaded %d cells x %d genes from %s", adata.n_obs, adata.n_vars, input_path)

    engine = DoubletDetectionEngine(cfg, logger=run_logger)
    try:
        result = engine.run(
            adata,
            clusters=parse_clusters(clusters),
            samples=samples,
            known_doublets=known_doublets,
            return_type=return_type,
        )
    except DoubletRefineryError as e:
        run_logger.error("%s", e)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if return_type == "table":
        output_file = write_table(result, out_dir / "doublet_table.csv")
    else:
        output_file = out_dir / "doublets.h5ad"
        result.write_h5ad(output_file)

    summary = dict(engine.last_summary)
    summary["input"] = str(input_path)
    summary["output"] = str(output_file)
    summary["config"] = cfg.to_dict()
    log_yaml(out_dir / "doublet_summary.yaml", summary)

    n_doublets = summary.get("n_doublets")
    if n_doublets is not None:
        click.echo(f"Doublet detection complete: {n_doublets} of {summary['n_cells']} cells called doublets")
    else:
        click.echo("Doublet detection complete (scores only)")
    click.echo(f"Output saved to: {output_file}")
    click.echo(f"Log: {log_path}")


@cli.command("show-config")
def show_config() -> None:
    """Print the default detection configuration as YAML."""
    from doublet_refinery.core.detection import DetectionConfig

    click.echo(yaml.safe_dump(DetectionConfig.default().to_dict(), sort_keys=False))


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
