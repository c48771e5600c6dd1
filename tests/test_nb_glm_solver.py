"""
Tests for the pydeseq2-backed negative-binomial GLM solver.
"""

import numpy as np
import pytest

from hkg_pipeline.domain.exceptions import ModelFitError
from hkg_pipeline.domain.services.nb_glm_solver import PyDESeq2NBGLMSolver

TWO_GROUPS = np.column_stack([np.ones(6), [0, 0, 0, 1, 1, 1]])


def test_group_means_are_recovered():
    counts = np.array([100, 100, 100, 200, 200, 200], dtype=float)

    fit = PyDESeq2NBGLMSolver().fit_gene(counts, TWO_GROUPS, np.zeros(6), 0.01)

    np.testing.assert_allclose(fit.coef, [np.log(100), np.log(2)], rtol=1e-4)
    assert fit.converged
    assert fit.cov.shape == (2, 2)
    assert np.all(np.diag(fit.cov) > 0)


def test_offset_absorbs_size_factors():
    design = np.ones((4, 1))
    size_factors = np.array([0.5, 1.0, 2.0, 4.0])
    counts = 50.0 * size_factors

    fit = PyDESeq2NBGLMSolver().fit_gene(counts, design, np.log(size_factors), 0.05)

    assert fit.coef[0] == pytest.approx(np.log(50), rel=1e-4)


def test_gene_silent_in_one_group_keeps_finite_estimates():
    counts = np.array([0, 0, 0, 900, 1100, 1000], dtype=float)

    fit = PyDESeq2NBGLMSolver().fit_gene(counts, TWO_GROUPS, np.zeros(6), 0.01)

    assert np.all(np.isfinite(fit.coef))
    assert np.all(np.abs(fit.coef) <= 30)
    std_error = np.sqrt(fit.cov[1, 1])
    assert fit.coef[1] > 5
    assert std_error < 3
    assert fit.coef[1] / std_error > 3


@pytest.mark.parametrize("dispersion", [0.0, -0.1, np.nan])
def test_invalid_dispersion_raises_model_fit_error(dispersion):
    counts = np.array([10, 12, 9, 40, 60, 50], dtype=float)

    with pytest.raises(ModelFitError):
        PyDESeq2NBGLMSolver().fit_gene(counts, TWO_GROUPS, np.zeros(6), dispersion)
