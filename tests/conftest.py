"""
Shared fixtures: a hand-checkable toy matrix and a simulated three-tissue cohort.
"""

import numpy as np
import pandas as pd
import pytest

TISSUES = ["Brain", "Liver", "Muscle"]
STABLE_SYMBOLS = ["ACTB", "B2M", "GAPDH", "GUSB", "HMBS", "HPRT1", "PGK1", "TBP"]


@pytest.fixture
def toy_counts():
    """4 genes x 6 samples: constant, 2x shifted between groups, one outlier, all zero"""
    return pd.DataFrame(
        {
            "s0": [1000, 100, 150, 0],
            "s1": [1000, 100, 100, 0],
            "s2": [1000, 100, 100, 0],
            "s3": [1000, 200, 100, 0],
            "s4": [1000, 200, 100, 0],
            "s5": [1000, 200, 100, 0],
        },
        index=pd.Index(["const", "shift", "outlier", "zero"], name="gene_id"),
    )


@pytest.fixture
def toy_metadata():
    """Two groups of three replicates"""
    return pd.DataFrame(
        {"group": ["A", "A", "A", "B", "B", "B"]},
        index=pd.Index([f"s{i}" for i in range(6)], name="sample"),
    )


def simulate_cohort(seed: int = 7, n_noisy: int = 52, n_de: int = 10, dispersion: float = 0.15):
    """
    Simulate NB counts for 3 tissues x 3 replicates.

    The first `n_de` noisy genes are 4-fold up in Liver. Eight genes follow the
    sequencing depth exactly and one gene is never detected.

    Returns:
        dict: counts, metadata, symbols, de_genes, stable_genes, depth
    """
    rng = np.random.default_rng(seed)
    samples = [f"{tissue}_{rep}" for tissue in TISSUES for rep in range(1, 4)]
    tissue_of = np.repeat(TISSUES, 3)
    depth = np.array([0.7, 1.0, 1.3, 0.9, 1.2, 0.8, 1.1, 0.75, 1.25])

    rows, genes = [], []
    size = 1.0 / dispersion
    for i in range(n_noisy):
        base = rng.uniform(200, 2000)
        mu = base * depth
        if i < n_de:
            mu = mu * np.where(tissue_of == "Liver", 4.0, 1.0)
        rows.append(rng.negative_binomial(size, size / (size + mu)))
        genes.append(f"ENSG{i:05d}")

    stable_genes = []
    for i, symbol in enumerate(STABLE_SYMBOLS):
        base = rng.uniform(3000, 6000)
        rows.append(np.round(base * depth).astype(np.int64))
        gene = f"ENSG{900 + i:05d}"
        genes.append(gene)
        stable_genes.append(gene)

    rows.append(np.zeros(len(samples), dtype=np.int64))
    genes.append("ENSG99999")

    counts = pd.DataFrame(
        np.vstack(rows).astype(np.int64),
        index=pd.Index(genes, name="gene_id"),
        columns=samples,
    )
    metadata = pd.DataFrame({"Tissue": tissue_of}, index=pd.Index(samples, name="sample"))
    symbols = dict(zip(stable_genes, STABLE_SYMBOLS))
    return {
        "counts": counts,
        "metadata": metadata,
        "symbols": symbols,
        "de_genes": genes[:n_de],
        "stable_genes": stable_genes,
        "depth": pd.Series(depth, index=samples),
    }


@pytest.fixture
def cohort():
    """Simulated three-tissue cohort"""
    return simulate_cohort()


@pytest.fixture
def cohort_files(tmp_path, cohort):
    """Cohort written to disk as a count TSV with a gene_name column and a metadata TSV"""
    counts = cohort["counts"].copy()
    counts.insert(0, "gene_name", [cohort["symbols"].get(g, f"GENE{g[-5:]}") for g in counts.index])
    counts_file = tmp_path / "counts.tsv"
    counts.to_csv(counts_file, sep="\t")

    metadata_file = tmp_path / "metadata.tsv"
    cohort["metadata"].to_csv(metadata_file, sep="\t")
    return str(counts_file), str(metadata_file)
