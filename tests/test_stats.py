"""Tests for the statistical helpers."""

import numpy as np
import pytest
from scipy import stats

from rnaseq_enrichment.stats import (
    running_enrichment,
    enrichment_score,
    adjust_pvalues,
    hypergeometric_pvalues,
    wallenius_pvalues,
)


def test_running_enrichment_top_hits():
    """Hits at the top of the ranking give a positive peak at the last hit."""
    scores = np.array([3.0, 2.0, 1.0, -1.0, -2.0])
    hits = np.array([True, True, False, False, False])
    running = running_enrichment(scores, hits)

    assert running[1] == pytest.approx(1.0)
    assert running[-1] == pytest.approx(0.0)
    assert enrichment_score(running) == pytest.approx(1.0)


def test_running_enrichment_bottom_hits():
    """Hits at the bottom give a negative enrichment score."""
    scores = np.array([3.0, 2.0, 1.0, -1.0, -2.0])
    hits = np.array([False, False, False, True, True])
    running = running_enrichment(scores, hits)

    assert enrichment_score(running) == pytest.approx(-1.0)
    assert running[-1] == pytest.approx(0.0)


def test_running_enrichment_unweighted():
    """With weight 0 every hit contributes equally."""
    scores = np.array([10.0, 1.0, 0.5, 0.1])
    hits = np.array([True, False, True, False])
    running = running_enrichment(scores, hits, weight=0.0)
    np.testing.assert_allclose(running, [0.5, 0.0, 0.5, 0.0])


def test_running_enrichment_degenerate():
    """No hits or all hits give a flat running sum."""
    scores = np.array([1.0, 0.5])
    assert np.all(running_enrichment(scores, [False, False]) == 0)
    assert np.all(running_enrichment(scores, [True, True]) == 0)
    assert enrichment_score(np.array([])) == 0.0


def test_adjust_pvalues():
    """Benjamini-Hochberg adjustment is monotone and bounded."""
    raw = [0.01, 0.04, 0.03, 0.005]
    adjusted = adjust_pvalues(raw)
    assert adjusted == pytest.approx([0.02, 0.04, 0.04, 0.02])
    assert all(a >= r for a, r in zip(adjusted, raw))
    assert adjust_pvalues([]) == []


def test_hypergeometric_pvalues():
    """Over-representation tail matches scipy's survival function."""
    result = hypergeometric_pvalues(k=5, pop_size=100, set_size=10, draws=20)
    assert result['over'] == pytest.approx(stats.hypergeom(100, 10, 20).sf(4))
    assert result['under'] == pytest.approx(stats.hypergeom(100, 10, 20).cdf(5))
    assert hypergeometric_pvalues(0, 100, 10, 20)['over'] == pytest.approx(1.0)


def test_wallenius_unit_odds_matches_hypergeometric():
    """With odds of one Wallenius reduces to the hypergeometric distribution."""
    for k in (0, 2, 5, 8):
        wall = wallenius_pvalues(k, 200, 30, 25, odds=1.0)
        hyper = hypergeometric_pvalues(k, 200, 30, 25)
        assert wall['over'] == pytest.approx(hyper['over'], abs=1e-6)
        assert wall['under'] == pytest.approx(hyper['under'], abs=1e-6)


def test_wallenius_odds_shift():
    """Higher odds make a large overlap less surprising."""
    neutral = wallenius_pvalues(10, 200, 30, 25, odds=1.0)['over']
    biased = wallenius_pvalues(10, 200, 30, 25, odds=3.0)['over']
    assert biased > neutral


def test_wallenius_degenerate_and_invalid():
    assert wallenius_pvalues(3, 10, 10, 3, odds=2.0) == {'over': 1.0, 'under': 1.0}
    assert wallenius_pvalues(0, 10, 4, 0, odds=2.0) == {'over': 1.0, 'under': 1.0}
    with pytest.raises(ValueError, match="odds"):
        wallenius_pvalues(1, 10, 4, 3, odds=0.0)
    with pytest.raises(ValueError, match="odds"):
        wallenius_pvalues(1, 10, 4, 3, odds=float('inf'))
