"""
Statistical helpers shared by the enrichment tests.
"""

from typing import Dict, List, Sequence

import numba as nb
import numpy as np
from scipy import stats
from statsmodels.stats.multitest import multipletests


#  Core numba-optimised functions for inner loops

@nb.njit
def _running_sum(scores, hits, weight):
    """
    Weighted Kolmogorov-Smirnov running sum over a ranked list.

    Args:
        scores: Ranking scores, already sorted in descending order
        hits: Boolean array, True where the gene belongs to the set
        weight: Exponent applied to |score| for hit increments

    Returns:
        Array with the running enrichment score at each position
    """
    n = scores.shape[0]
    n_hits = 0
    hit_norm = 0.0
    for i in range(n):
        if hits[i]:
            n_hits += 1
            hit_norm += abs(scores[i]) ** weight

    running = np.zeros(n, dtype=np.float64)
    if n_hits == 0 or n_hits == n:
        return running

    miss_step = 1.0 / (n - n_hits)
    current = 0.0
    for i in range(n):
        if hits[i]:
            if hit_norm > 0:
                current += abs(scores[i]) ** weight / hit_norm
            else:
                current += 1.0 / n_hits
        else:
            current -= miss_step
        running[i] = current
    return running


def running_enrichment(scores, hits, weight: float = 1.0) -> np.ndarray:
    """Running enrichment score for sorted scores and a hit mask."""
    return _running_sum(
        np.asarray(scores, dtype=np.float64),
        np.asarray(hits, dtype=np.bool_),
        float(weight)
    )


def enrichment_score(running: np.ndarray) -> float:
    """Maximum deviation from zero of a running sum."""
    if len(running) == 0:
        return 0.0
    idx_max = int(np.argmax(running))
    idx_min = int(np.argmin(running))
    if abs(running[idx_max]) >= abs(running[idx_min]):
        return float(running[idx_max])
    return float(running[idx_min])


def adjust_pvalues(p_values: Sequence[float], method: str = 'fdr_bh') -> List[float]:
    """
    Multiple-testing correction.

    Args:
        p_values: Raw p-values
        method: Any statsmodels multipletests method (Benjamini-Hochberg by default)

    Returns:
        Adjusted p-values in input order
    """
    p_values = np.asarray(p_values, dtype=np.float64)
    if p_values.size == 0:
        return []
    _, pvals_corrected, _, _ = multipletests(p_values, method=method)
    return pvals_corrected.tolist()


def hypergeometric_pvalues(k: int, pop_size: int, set_size: int, draws: int) -> Dict[str, float]:
    """
    Over- and under-representation p-values under the hypergeometric null.

    Args:
        k: Selected genes inside the set
        pop_size: Number of genes in the universe
        set_size: Number of universe genes in the set
        draws: Number of selected genes

    Returns:
        Dictionary with 'over' (P[X >= k]) and 'under' (P[X <= k])
    """
    dist = stats.hypergeom(pop_size, set_size, draws)
    return {
        'over': float(dist.sf(k - 1)),
        'under': float(dist.cdf(k)),
    }


def wallenius_pvalues(k: int, pop_size: int, set_size: int, draws: int, odds: float) -> Dict[str, float]:
    """
    Over- and under-representation p-values under Wallenius' non-central
    hypergeometric distribution.

    Args:
        k: Selected genes inside the set
        pop_size: Number of genes in the universe
        set_size: Number of universe genes in the set
        draws: Number of selected genes
        odds: Relative probability of drawing a gene from inside the set

    Returns:
        Dictionary with 'over' (P[X >= k]) and 'under' (P[X <= k])
    """
    if not np.isfinite(odds) or odds <= 0:
        raise ValueError(f"Wallenius odds must be positive and finite, got {odds}")
    if set_size == pop_size or set_size == 0 or draws == 0:
        # Degenerate support, the count is fixed
        return {'over': 1.0, 'under': 1.0}
    dist = stats.nchypergeom_wallenius(pop_size, set_size, draws, odds)
    over = float(min(1.0, max(0.0, dist.sf(k - 1))))
    under = float(min(1.0, max(0.0, dist.cdf(k))))
    return {'over': over, 'under': under}
