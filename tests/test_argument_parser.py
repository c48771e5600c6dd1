"""
Tests for command line parsing into a PipelineConfig.
"""

import pytest

from hkg_pipeline.infrastructure.argument_parser import ArgumentParser


@pytest.fixture
def inputs(tmp_path):
    counts = tmp_path / "counts.tsv"
    metadata = tmp_path / "metadata.tsv"
    counts.write_text("gene_id\ta\n")
    metadata.write_text("sample\tTissue\n")
    return ["-c", str(counts), "-m", str(metadata), "-o", str(tmp_path / "out")]


def test_defaults(inputs, tmp_path):
    config = ArgumentParser().parse_arguments(inputs)

    assert config.run_name == "hkg"
    assert config.covariate == "Tissue"
    assert config.k == 1
    assert config.percentile == 2.0
    assert config.min_count == 10
    assert config.ruv_strategy == "svd"
    assert config.contrasts == []
    assert (tmp_path / "out").is_dir()


def test_options(inputs):
    config = ArgumentParser().parse_arguments(
        inputs
        + ["-n", "liver", "-k", "2", "-p", "5", "-s", "factor_analysis", "-r", "Brain",
           "--contrasts", "Liver:Brain, Muscle:Brain", "-j", "4"]
    )

    assert config.run_name == "liver"
    assert config.k == 2
    assert config.percentile == 5.0
    assert config.ruv_strategy == "factor_analysis"
    assert config.reference_level == "Brain"
    assert config.contrasts == [("Liver", "Brain"), ("Muscle", "Brain")]
    assert config.n_jobs == 4


def test_malformed_contrast(inputs):
    with pytest.raises(ValueError):
        ArgumentParser().parse_arguments(inputs + ["--contrasts", "Liver-Brain"])


def test_invalid_k(inputs):
    with pytest.raises(ValueError):
        ArgumentParser().parse_arguments(inputs + ["-k", "0"])


def test_invalid_percentile(inputs):
    with pytest.raises(ValueError):
        ArgumentParser().parse_arguments(inputs + ["-p", "150"])


def test_missing_input_file(inputs, tmp_path):
    inputs[1] = str(tmp_path / "absent.tsv")
    with pytest.raises(ValueError):
        ArgumentParser().parse_arguments(inputs)


def test_unknown_strategy_exits(inputs):
    with pytest.raises(SystemExit):
        ArgumentParser().parse_arguments(inputs + ["-s", "pca"])
