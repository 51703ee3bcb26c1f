"""Unit tests for the command-line interface."""

import pandas as pd
import pytest
import yaml
from click.testing import CliRunner

from doublet_refinery.cli.main import cli, parse_clusters
from tests.fixtures import create_doublet_adata


@pytest.fixture
def input_h5ad(tmp_path):
    adata = create_doublet_adata(n_cells_per_cluster=50, n_doublets=15)
    path = tmp_path / "counts.h5ad"
    adata.write_h5ad(path)
    return path


@pytest.fixture
def fast_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "generation": {"artificial_doublets": 500},
        "training": {"nrounds": 20},
    }))
    return path


class TestParseClusters:
    def test_integer(self):
        assert parse_clusters("8") == 8

    def test_column(self):
        assert parse_clusters("leiden") == "leiden"

    def test_none(self):
        assert parse_clusters(None) is None


class TestCli:
    """Tests for CLI commands."""

    def test_show_config(self):
        result = CliRunner().invoke(cli, ["show-config"])
        assert result.exit_code == 0
        config = yaml.safe_load(result.output)
        assert config["training"]["score"] == "xgb"
        assert config["threshold"]["dbr_sd"] == 0.015

    def test_detect_h5ad(self, input_h5ad, fast_config_file, tmp_output_dir):
        import anndata as ad

        result = CliRunner().invoke(cli, [
            "detect",
            "-i", str(input_h5ad),
            "-o", str(tmp_output_dir),
            "-c", str(fast_config_file),
            "--clusters", "cluster",
            "--dbr", "0.09",
        ])
        assert result.exit_code == 0, result.output
        assert "Doublet detection complete" in result.output
        adata = ad.read_h5ad(tmp_output_dir / "doublets.h5ad")
        assert "doublet_class" in adata.obs.columns
        summary = yaml.safe_load((tmp_output_dir / "doublet_summary.yaml").read_text().split("\n---")[0])
        assert summary["dbr"] == pytest.approx(0.09)
        assert summary["config"]["generation"]["artificial_doublets"] == 500
        assert list(tmp_output_dir.glob("doublets_*.log"))

    def test_detect_table(self, input_h5ad, fast_config_file, tmp_output_dir):
        result = CliRunner().invoke(cli, [
            "detect",
            "-i", str(input_h5ad),
            "-o", str(tmp_output_dir),
            "-c", str(fast_config_file),
            "--clusters", "cluster",
            "--score", "ratio",
            "--return-type", "table",
        ])
        assert result.exit_code == 0, result.output
        table = pd.read_csv(tmp_output_dir / "doublet_table.csv", index_col=0)
        assert (table["src"] == "artificial").sum() == 500
        assert "score" in table.columns

    def test_detect_error_exit_code(self, input_h5ad, tmp_output_dir):
        result = CliRunner().invoke(cli, [
            "detect",
            "-i", str(input_h5ad),
            "-o", str(tmp_output_dir),
            "--clusters", "missing_column",
        ])
        assert result.exit_code == 1
        assert "not found" in result.output
