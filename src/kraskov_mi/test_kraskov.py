"""
Tests of the KSG mutual information estimators.
"""
import numpy as np
import pytest
import sys
import os
from scipy.special import digamma

# Add parent directory to path for local testing
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kraskov_mi import (
    KraskovMutualInfo,
    compute_MI,
    compute_local_MI,
    get_last_info,
    gaussian_entropy,
)


def _gaussian_pair(n_pts, rho, seed=0):
    rng = np.random.default_rng(seed)
    x = rng.normal(size=n_pts)
    y = rho * x + np.sqrt(1 - rho ** 2) * rng.normal(size=n_pts)
    return x, y


def _diagonal_segments(n_each=100):
    """Four diagonal segments, one in each quadrant, one after the other."""
    x = np.zeros(4 * n_each)
    y = np.zeros(4 * n_each)
    t = np.arange(n_each)
    segment = 0
    for rx in range(2):
        for ry in range(2):
            x[segment * n_each:(segment + 1) * n_each] = t + 2 * n_each * rx
            y[segment * n_each:(segment + 1) * n_each] = t + 2 * n_each * ry
            segment += 1
    return x, y


@pytest.mark.parametrize("algorithm", [1, 2])
def test_locals_average_correctly(algorithm):
    """The average equals the mean of the stored local values."""
    rng = np.random.default_rng(5)
    x = rng.normal(size=(400, 2))
    y = x[:, :1] + 0.5 * rng.normal(size=(400, 1))

    calc = KraskovMutualInfo(algorithm=algorithm, k=4)
    calc.initialise(2, 1)
    calc.set_observations(x, y)
    average = calc.compute_average_local_of_observations()
    local_values = calc.compute_local_of_previous_observations()

    print(f"  algorithm {algorithm}: average = {average:.5f}")
    assert local_values.shape == (400,)
    np.testing.assert_allclose(average, np.mean(local_values), rtol=1e-12)
    assert calc.get_last_average() == average
    info = get_last_info()
    assert info[0] == average and info[3] == 400 and info[4] == 1


@pytest.mark.parametrize("algorithm", [1, 2])
def test_locals_from_counts(algorithm):
    """Local values follow the estimator formulas applied to the neighbour counts."""
    x, y = _gaussian_pair(300, 0.5, seed=2)
    calc = KraskovMutualInfo(algorithm=algorithm, k=3, add_noise=0)
    calc.set_observations(x, y)
    local_values = calc.compute_local_of_previous_observations()
    counts = calc.partial_compute_from_observations(0, 300)

    n = calc.get_num_observations()
    if algorithm == 1:
        expected = digamma(3) - digamma(counts.n_x + 1) - digamma(counts.n_y + 1) + digamma(n)
        np.testing.assert_array_equal(counts.radius_x, counts.radius)
    else:
        expected = digamma(3) - 1 / 3 - digamma(counts.n_x) - digamma(counts.n_y) + digamma(n)
        assert np.all(counts.radius_x <= counts.radius)
        assert np.all(counts.n_x >= 1)
    np.testing.assert_allclose(local_values, expected, rtol=1e-10, atol=1e-12)

    single = calc.partial_compute_from_observations(7)
    assert isinstance(single.n_x, int)
    assert single.n_x == counts.n_x[7] and single.n_y == counts.n_y[7]
    np.testing.assert_allclose(calc.partial_compute_from_observations(7, 1, return_locals=True),
                               local_values[7:8])


def test_various_num_threads():
    """Results do not depend on the number of threads."""
    rng = np.random.default_rng(3)
    x = rng.normal(size=(500, 2))
    y = rng.normal(size=(500, 2)) + x

    results = []
    for n_threads in (1, 2, 4, 7, 'all'):
        calc = KraskovMutualInfo(algorithm=2, noise_seed=11, num_threads=n_threads)
        calc.set_observations(x, y)
        average = calc.compute_average_local_of_observations()
        results.append((average, calc.compute_local_of_previous_observations()))

    for average, local_values in results[1:]:
        assert average == results[0][0]
        np.testing.assert_array_equal(local_values, results[0][1])


def test_compute_significance_doesnt_alter_average():
    x, y = _gaussian_pair(300, 0.8, seed=4)
    calc = KraskovMutualInfo(algorithm=1, add_noise=0)
    calc.set_observations(x, y)
    average = calc.compute_average_local_of_observations()
    local_values = calc.compute_local_of_previous_observations()

    result = calc.compute_significance(20, seed=1)
    print(f"  MI = {average:.4f}, surrogates {result.mean:.4f} +/- {result.std:.4f}, p = {result.p_value}")
    assert result.actual_value == average
    assert result.n_surrogates == 20
    assert result.p_value == 0.0
    assert abs(result.mean) < 0.1

    assert calc.get_last_average() == average
    assert get_last_info()[0] == average
    np.testing.assert_array_equal(calc.compute_local_of_previous_observations(), local_values)
    assert calc.compute_average_local_of_observations() == average


def test_significance_explicit_permutations():
    x, y = _gaussian_pair(100, 0.5, seed=6)
    calc = KraskovMutualInfo(add_noise=0)
    calc.set_observations(x, y)
    average = calc.compute_average_local_of_observations()

    result = calc.compute_significance(permutations=[np.arange(100), np.arange(100)[::-1]])
    # the identity leaves the data unchanged
    assert result.surrogate_values[0] == average
    assert result.n_surrogates == 2

    with pytest.raises(ValueError):
        calc.compute_significance(permutations=[np.zeros(100, dtype=int)])
    with pytest.raises(ValueError):
        calc.compute_significance(permutations=[np.arange(99)])

    # seeded orderings are reproducible
    first = calc.compute_significance(10, seed=3)
    second = calc.compute_significance(10, seed=3)
    np.testing.assert_array_equal(first.surrogate_values, second.surrogate_values)


def test_snapshot_is_read_only():
    """The reference data cannot be altered through the snapshot."""
    x, y = _gaussian_pair(50, 0.5, seed=8)
    calc = KraskovMutualInfo(add_noise=0)
    calc.set_observations(x, y)
    average = calc.compute_average_local_of_observations()
    snapshot = calc.get_reference_snapshot()

    assert not snapshot.x.flags.writeable
    assert not snapshot.y.flags.writeable
    with pytest.raises(ValueError):
        snapshot.x[0, 0] = 1.0
    with pytest.raises(ValueError):
        snapshot.y[0, 0] = 1.0
    assert calc.compute_average_local_of_observations() == average


def test_dyn_corr_excl_and_set_indices():
    """Analytic results on diagonal segments, with and without dynamic correlation exclusion."""
    n_each = 100
    k = 4
    w = 2
    x, y = _diagonal_segments(n_each)
    n = 4 * n_each

    # the k neighbours lie on the same segment, and each marginal also
    # catches the segment sharing the same x (or y) range: n_x = n_y = 2k+1
    expected_without = digamma(k) - 1 / k - 2 * digamma(2 * k + 1) + digamma(n)
    # with exclusion, the kernels widen by the window on both sides, except near the edges
    expected_with = (
        (n_each - 4) * 4 / n * (digamma(k) - 1 / k - 2 * digamma(2 * k + 1 + 2 * w) + digamma(n))
        + 2 * 4 / n * (digamma(k) - 1 / k - 2 * digamma(2 * k + 1 + 2 * w - 1) + digamma(n))
        + 2 * 4 / n * (digamma(k) - 1 / k - 2 * digamma(2 * k + 1 + 2 * w - 2) + digamma(n)))

    calc = KraskovMutualInfo(algorithm=2, k=k, add_noise=0, normalise=False)
    calc.initialise(1, 1)
    calc.set_observations(x, y)
    mi_without = calc.compute_average_local_of_observations()
    counts_without = calc.partial_compute_from_observations(0, n)
    print(f"  without exclusion: {mi_without:.6f} (expected {expected_without:.6f})")
    assert abs(mi_without - expected_without) < 1e-5
    np.testing.assert_array_equal(counts_without.n_x, 2 * k + 1)

    calc.set_property('dyn-corr-excl-time', w)
    calc.initialise(1, 1)
    calc.set_observations(x, y)
    mi_with = calc.compute_average_local_of_observations()
    counts_with = calc.partial_compute_from_observations(0, n)
    print(f"  with exclusion:    {mi_with:.6f} (expected {expected_with:.6f})")
    assert abs(mi_with - expected_with) < 1e-5
    assert np.all(counts_with.n_x >= counts_without.n_x)
    assert np.all(counts_with.n_y >= counts_without.n_y)

    # one set per sample: exclusion never applies across sets
    calc.initialise(1, 1)
    calc.start_add_observations()
    for t in range(n):
        calc.add_observations(x[t:t + 1], y[t:t + 1])
    calc.finalise_add_observations()
    np.testing.assert_array_equal(calc.get_observation_set_indices(), np.arange(n))
    mi_separate = calc.compute_average_local_of_observations()
    assert abs(mi_separate - expected_without) < 1e-5
    assert get_last_info()[4] == n


@pytest.mark.parametrize("algorithm", [1, 2])
@pytest.mark.parametrize("k", [4, 10, 15])
def test_new_observations(algorithm, k):
    """Observations passed again as new ones, with k+1, find the same neighbours plus themselves."""
    rng = np.random.default_rng(8)
    x = rng.normal(size=200)
    y = 0.6 * x + rng.normal(size=200)

    calc = KraskovMutualInfo(algorithm=algorithm, k=k, add_noise=0)
    calc.initialise(1, 1)
    calc.set_observations(x, y)
    calc.compute_average_local_of_observations()

    calc_new = KraskovMutualInfo(algorithm=algorithm, k=k + 1, add_noise=0)
    calc_new.initialise(1, 1)
    calc_new.set_observations(x, y)
    new_locals = calc_new.compute_local_using_previous_observations(x, y)

    snapshot = calc_new.get_reference_snapshot()
    original = calc.partial_compute_from_observations(0, 200)
    new = calc_new.partial_compute_from_new_observations(0, 200, snapshot.x, snapshot.y)
    np.testing.assert_array_equal(original.n_x, new.n_x - 1)
    np.testing.assert_array_equal(original.n_y, new.n_y - 1)

    n = calc_new.get_num_observations()
    if algorithm == 1:
        expected = calc_new.digamma_k - digamma(new.n_x + 1) - digamma(new.n_y + 1) + digamma(n + 1)
    else:
        expected = (calc_new.digamma_k - 1 / calc_new.k
                    - digamma(new.n_x) - digamma(new.n_y) + digamma(n + 1))
    np.testing.assert_allclose(new_locals, expected, atol=1e-8)

    # the reference observations are untouched
    assert calc_new.get_num_observations() == 200
    assert calc_new.get_last_average() is None


def test_new_observations_normalised_with_reference():
    """New samples are normalised with the statistics of the observations."""
    x, y = _gaussian_pair(300, 0.7, seed=9)
    calc = KraskovMutualInfo(add_noise=0)
    calc.set_observations(x, y)
    # a shifted and scaled copy is not the same data for the reference population
    scaled = calc.compute_local_using_previous_observations(3 * x + 5, y)
    same = calc.compute_local_using_previous_observations(x, y)
    assert not np.allclose(scaled, same)
    assert np.mean(same) > np.mean(scaled)

    with pytest.raises(ValueError):
        calc.compute_local_using_previous_observations(np.zeros((10, 2)), np.zeros(10))
    with pytest.raises(ValueError):
        calc.compute_local_using_previous_observations(np.zeros(10), np.zeros(9))


def test_seed():
    """Same seed gives the same results; unseeded noise is drawn anew."""
    x = np.round(np.random.default_rng(10).normal(size=300), 1)     # many ties
    y = np.round(x + np.random.default_rng(11).normal(size=300), 1)

    def run(seed):
        calc = KraskovMutualInfo(algorithm=1, add_noise=1e-8, noise_seed=seed)
        calc.set_observations(x, y)
        return calc.compute_local_of_previous_observations(), calc.get_reference_snapshot().x

    local_1, data_1 = run(1)
    local_2, data_2 = run(1)
    np.testing.assert_array_equal(local_1, local_2)
    np.testing.assert_array_equal(data_1, data_2)

    _, data_3 = run(None)
    _, data_4 = run(None)
    assert not np.array_equal(data_3, data_4)
    # noise is small against the data
    np.testing.assert_allclose(data_3, data_1, atol=1e-7)


@pytest.mark.parametrize("algorithm", [1, 2])
def test_mi_independent(algorithm):
    """MI of independent variables is close to 0."""
    rng = np.random.default_rng(12)
    x = rng.uniform(size=3000)
    y = rng.uniform(size=3000)
    calc = KraskovMutualInfo(algorithm=algorithm, k=4, add_noise=0)
    calc.set_observations(x, y)
    mi = calc.compute_average_local_of_observations()
    print(f"  MI (independent) = {mi:.4f} (should be ~0)")
    assert abs(mi) < 0.05

    # multivariate
    x2 = rng.uniform(size=(3000, 2))
    calc.initialise(2, 1)
    calc.set_observations(x2, y)
    mi = calc.compute_average_local_of_observations()
    print(f"  MI (independent, 2D) = {mi:.4f} (should be ~0)")
    assert abs(mi) < 0.05


@pytest.mark.parametrize("algorithm", [1, 2])
def test_mi_correlated_gaussian(algorithm):
    """MI of correlated Gaussians is close to -0.5 log(1 - rho^2)."""
    rho = 0.8
    x, y = _gaussian_pair(3000, rho, seed=13)
    calc = KraskovMutualInfo(algorithm=algorithm)
    calc.set_observations(x, y)
    mi = calc.compute_average_local_of_observations()
    mi_theory = -0.5 * np.log(1 - rho ** 2)
    print(f"  MI = {mi:.4f}, theory = {mi_theory:.4f}")
    assert abs(mi - mi_theory) < 0.05


def test_conditional_entropy():
    rho = 0.6
    x, y = _gaussian_pair(2000, rho, seed=14)
    calc = KraskovMutualInfo(algorithm=1)
    calc.set_observations(x, y)
    h_cond = calc.compute_average_conditional_entropy()
    mi = calc.get_last_average()

    assert h_cond == gaussian_entropy(calc.get_reference_snapshot().x) - mi
    h_theory = 0.5 * (1 + np.log(2 * np.pi)) + 0.5 * np.log(1 - rho ** 2)
    print(f"  H(X|Y) = {h_cond:.4f}, theory = {h_theory:.4f}")
    assert abs(h_cond - h_theory) < 0.05

    assert calc.compute_average_conditional_entropy(entropy_x=2.0) == 2.0 - mi


def test_multiple_observation_sets():
    """Data added as several sets is pooled for the estimate."""
    x, y = _gaussian_pair(400, 0.5, seed=15)
    calc = KraskovMutualInfo(add_noise=0)
    calc.initialise(1, 1)
    calc.start_add_observations()
    calc.add_observations(x, y, 0, 200)
    calc.add_observations(x, y, 200, 200)
    calc.finalise_add_observations()
    mi_sets = calc.compute_average_local_of_observations()
    assert get_last_info()[4] == 2

    # without exclusion, splitting into sets changes nothing
    single = KraskovMutualInfo(add_noise=0)
    single.set_observations(x, y)
    assert single.compute_average_local_of_observations() == mi_sets


def test_property_changes():
    x, y = _gaussian_pair(300, 0.5, seed=16)
    calc = KraskovMutualInfo(add_noise=0)
    calc.set_observations(x, y)
    mi_k4 = calc.compute_average_local_of_observations()
    snapshot = calc.get_reference_snapshot()
    assert calc.get_property('K') == '4'
    assert calc.get_property('num_threads') == 'all'
    assert calc.get_property('noise-seed') == 'unseeded'

    # threads do not invalidate anything
    calc.set_property('num-threads', 2)
    assert calc.get_last_average() == mi_k4

    # the algorithm keeps the neighbour indices, not the results
    calc.set_property('algorithm', '2')
    assert calc.get_last_average() is None
    assert calc.get_reference_snapshot() is snapshot

    calc.set_property('algorithm', 1)
    calc.set_property('k', '6')
    assert calc.k == 6
    assert calc.digamma_k == digamma(6)
    assert calc.get_last_average() is None
    assert calc.get_reference_snapshot() is not snapshot
    mi_k6 = calc.compute_average_local_of_observations()

    fresh = KraskovMutualInfo(k=6, add_noise=0)
    fresh.set_observations(x, y)
    assert fresh.compute_average_local_of_observations() == mi_k6
    assert mi_k6 != mi_k4

    with pytest.raises(ValueError):
        calc.set_property('k', -1)
    with pytest.raises(ValueError):
        calc.set_property('no-such-property', 1)
    assert calc.k == 6


def test_errors():
    calc = KraskovMutualInfo()
    with pytest.raises(RuntimeError):
        calc.compute_average_local_of_observations()
    with pytest.raises(ValueError):
        calc.initialise()
    with pytest.raises(ValueError):
        KraskovMutualInfo(algorithm=3)

    calc.initialise(1, 1)
    calc.start_add_observations()
    calc.add_observations(np.arange(10.0), np.arange(10.0))
    with pytest.raises(RuntimeError):
        calc.compute_average_local_of_observations()     # not finalised

    # not enough points for k
    calc = KraskovMutualInfo(k=5)
    calc.set_observations(np.arange(5.0), np.arange(5.0))
    with pytest.raises(ValueError):
        calc.compute_average_local_of_observations()

    # the exclusion window leaves too few comparable points
    x, y = _gaussian_pair(20, 0.5)
    calc = KraskovMutualInfo(k=4, dyn_corr_excl_time=8)
    calc.set_observations(x, y)
    with pytest.raises(ValueError):
        calc.compute_average_local_of_observations()
    calc.set_property('dyn-corr-excl-time', 7)
    calc.compute_average_local_of_observations()

    with pytest.raises(ValueError):
        calc.partial_compute_from_observations(15, 10)


def test_compute_MI():
    """The functional API returns both algorithms, as the calculator does."""
    x, y = _gaussian_pair(500, 0.6, seed=17)
    mi = compute_MI(x, y, k=5, noise=0)
    assert len(mi) == 2

    for algorithm in (1, 2):
        calc = KraskovMutualInfo(algorithm=algorithm, k=5, add_noise=0)
        calc.set_observations(x, y)
        assert calc.compute_average_local_of_observations() == mi[algorithm - 1]

    local_values = compute_local_MI(x, y, algorithm=2, k=5, noise=0)
    np.testing.assert_allclose(np.mean(local_values), mi[1], rtol=1e-12)

    # a mask drops samples
    mask = np.ones(500)
    mask[100:150] = 0
    mi_masked = compute_MI(x, y, k=5, noise=0, mask=mask)
    assert get_last_info()[3] == 450
    assert get_last_info()[4] == 2
    assert np.all(np.isfinite(mi_masked))
