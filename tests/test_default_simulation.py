"""Tests for the one-factor t-copula default simulator."""

import numpy as np
import pytest

from crypto_credit_risk.default_simulation import CorrelatedDefaultSimulator
from crypto_credit_risk.scenarios import ScenarioParameters, horizon_default_probability


def _scenario(dof, rho):
    return ScenarioParameters("copula", "Copula", t_copula_dof=dof, default_correlation=rho)


def _joint_default_counts(simulator, n_loans, pd_value, trials):
    probabilities = np.full(n_loans, pd_value)
    return np.array([
        simulator.simulate([None] * n_loans, 30, probabilities).sum()
        for _ in range(trials)
    ])


def test_uniforms_lie_in_unit_interval(baseline):
    simulator = CorrelatedDefaultSimulator(baseline, np.random.default_rng(0))
    u = simulator.copula_uniforms(1_000)
    assert u.shape == (1_000,)
    assert np.all((u >= 0) & (u <= 1))


def test_empty_draw(baseline):
    simulator = CorrelatedDefaultSimulator(baseline, np.random.default_rng(0))
    assert simulator.copula_uniforms(0).shape == (0,)
    assert simulator.simulate([], 30).shape == (0,)


def test_t_copula_marginals_are_uniform():
    simulator = CorrelatedDefaultSimulator(_scenario(3.0, 0.5), np.random.default_rng(1))
    # Draws within one call share the common factor; take one per call
    u = np.concatenate([simulator.copula_uniforms(1) for _ in range(20_000)])
    assert u.mean() == pytest.approx(0.5, abs=0.01)
    assert np.mean(u < 0.1) == pytest.approx(0.1, abs=0.01)


def test_independent_gaussian_copula_hits_target_pd():
    simulator = CorrelatedDefaultSimulator(_scenario(float("inf"), 0.0), np.random.default_rng(2))
    probabilities = np.full(10, 0.2)
    flags = np.array([simulator.simulate([None] * 10, 30, probabilities) for _ in range(5_000)])

    assert flags.mean() == pytest.approx(0.2, abs=0.01)
    pairwise = np.corrcoef(flags[:, 0], flags[:, 1])[0, 1]
    assert abs(pairwise) < 0.05


def test_factor_loading_induces_default_correlation():
    simulator = CorrelatedDefaultSimulator(_scenario(float("inf"), 0.6), np.random.default_rng(3))
    probabilities = np.full(2, 0.2)
    flags = np.array([simulator.simulate([None] * 2, 30, probabilities) for _ in range(5_000)])
    assert np.corrcoef(flags[:, 0], flags[:, 1])[0, 1] > 0.2


def test_heavier_tails_cluster_defaults():
    gaussian = CorrelatedDefaultSimulator(_scenario(float("inf"), 0.3), np.random.default_rng(4))
    student = CorrelatedDefaultSimulator(_scenario(3.0, 0.3), np.random.default_rng(4))

    gaussian_counts = _joint_default_counts(gaussian, 10, 0.05, 20_000)
    student_counts = _joint_default_counts(student, 10, 0.05, 20_000)

    # Same marginal default rate
    assert student_counts.mean() / 10 == pytest.approx(0.05, abs=0.005)
    assert gaussian_counts.mean() / 10 == pytest.approx(0.05, abs=0.005)
    # More simultaneous defaults under the t-copula
    assert np.mean(student_counts >= 5) > np.mean(gaussian_counts >= 5)


def test_certain_and_impossible_defaults():
    simulator = CorrelatedDefaultSimulator(_scenario(float("inf"), 0.3), np.random.default_rng(5))
    flags = simulator.simulate([None, None], 30, np.array([1.0, 0.0]))
    assert flags.tolist() == [True, False]


def test_default_probabilities_follow_scenario(catalog, sample_portfolio):
    luna = catalog.get("luna-collapse")
    simulator = CorrelatedDefaultSimulator(luna, np.random.default_rng(0))
    probabilities = simulator.default_probabilities(sample_portfolio.loans, 90)
    expected = [
        horizon_default_probability(loan.rating.annual_pd, loan.leverage, luna, 90)
        for loan in sample_portfolio
    ]
    np.testing.assert_allclose(probabilities, expected)


def test_with_rng_shares_parameters(baseline):
    simulator = CorrelatedDefaultSimulator(baseline, np.random.default_rng(0))
    clone = simulator.with_rng(np.random.default_rng(1))
    assert clone.rng is not simulator.rng
    assert (clone.dof, clone.rho) == (simulator.dof, simulator.rho)
