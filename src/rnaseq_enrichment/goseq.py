"""
Category over-representation corrected for gene length bias.

Longer transcripts collect more reads and are more likely to be called
differentially expressed. A probability weighting function (PWF) relating
length to the chance of being called DE is fitted first; category p-values
then use Wallenius' non-central hypergeometric distribution, with each
category's odds set by the mean PWF of its members, or random sampling of
genes weighted by the PWF.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import polars as pl
from scipy import sparse
from sklearn.isotonic import IsotonicRegression
from tqdm.auto import tqdm

from rnaseq_enrichment.stats import adjust_pvalues, hypergeometric_pvalues, wallenius_pvalues

METHODS = ('wallenius', 'hypergeometric', 'sampling')


def nullp(
    flags: Mapping[str, int],
    lengths: Union[Mapping[str, float], Sequence[float]]
) -> pl.DataFrame:
    """
    Fit the probability weighting function.

    Args:
        flags: Gene -> 1 if differentially expressed else 0
        lengths: Gene -> length, or a sequence aligned with flags

    Returns:
        DataFrame with gene_id, de, bias_data and pwf columns. Genes without
        a length are given the median PWF.
    """
    genes = list(flags.keys())
    if not genes:
        raise ValueError("No genes supplied to the probability weighting fit")

    de = np.array([int(flags[g]) for g in genes], dtype=np.float64)
    if isinstance(lengths, Mapping):
        bias = np.array([
            lengths[g] if lengths.get(g) is not None else np.nan for g in genes
        ], dtype=np.float64)
    else:
        bias = np.asarray(lengths, dtype=np.float64)
        if bias.shape[0] != len(genes):
            raise ValueError(f"Got {bias.shape[0]} lengths for {len(genes)} genes")

    if de.sum() == 0:
        raise ValueError("No differentially expressed genes, the weighting function cannot be fitted")

    known = np.isfinite(bias)
    if not known.any():
        raise ValueError("No genes have length data")

    model = IsotonicRegression(increasing='auto', out_of_bounds='clip')
    model.fit(bias[known], de[known])

    pwf = np.full(len(genes), np.nan)
    pwf[known] = model.predict(bias[known])

    # Zero weights would make Wallenius odds degenerate
    positive = pwf[known][pwf[known] > 0]
    floor = positive.min() if positive.size else 1.0
    pwf[known] = np.maximum(pwf[known], floor)

    n_unknown = int((~known).sum())
    if n_unknown:
        median = float(np.median(pwf[known]))
        pwf[~known] = median
        logging.warning(f"Found {n_unknown} genes without length data; assigned the median weight {median:.4g}")

    logging.info(f"Fitted weighting function on {int(known.sum())} genes, "
                 f"{int(de.sum())} differentially expressed")

    return pl.DataFrame({
        'gene_id': genes,
        'de': de.astype(np.int64),
        'bias_data': bias,
        'pwf': pwf,
    })


def pwf_bins(pwf: pl.DataFrame, bin_size: int = 200) -> pl.DataFrame:
    """
    Proportion of DE genes in consecutive length bins.

    Args:
        pwf: Output of nullp
        bin_size: Genes per bin

    Returns:
        DataFrame with mean_length, proportion_de, mean_pwf and n_genes per bin
    """
    if bin_size < 1:
        raise ValueError("bin_size must be positive")
    return (
        pwf.filter(pl.col('bias_data').is_not_nan())
        .sort('bias_data')
        .with_row_index('idx')
        .with_columns((pl.col('idx') // bin_size).alias('bin'))
        .group_by('bin', maintain_order=True)
        .agg([
            pl.col('bias_data').mean().alias('mean_length'),
            pl.col('de').mean().alias('proportion_de'),
            pl.col('pwf').mean().alias('mean_pwf'),
            pl.len().alias('n_genes'),
        ])
        .drop('bin')
    )


def _membership_matrix(genes: List[str], gene2cat: Mapping[str, Sequence[str]]):
    categories = sorted({cat for g in genes for cat in gene2cat[g]})
    cat_index = {cat: j for j, cat in enumerate(categories)}
    rows, cols = [], []
    for i, gene in enumerate(genes):
        for cat in set(gene2cat[gene]):
            rows.append(i)
            cols.append(cat_index[cat])
    matrix = sparse.csr_matrix(
        (np.ones(len(rows), dtype=np.float64), (rows, cols)),
        shape=(len(genes), len(categories))
    )
    return categories, matrix


def _sampling_pvalues(
    matrix,
    weights: np.ndarray,
    num_de: int,
    observed: np.ndarray,
    repcnt: int,
    seed: Optional[int]
):
    rng = np.random.default_rng(seed)
    n_genes = matrix.shape[0]
    probabilities = weights / weights.sum()
    over = np.zeros(matrix.shape[1])
    under = np.zeros(matrix.shape[1])
    for _ in tqdm(range(repcnt), desc="Sampling", leave=False):
        picked = rng.choice(n_genes, size=num_de, replace=False, p=probabilities)
        counts = np.asarray(matrix[picked].sum(axis=0)).ravel()
        over += counts >= observed
        under += counts <= observed
    return (over + 1) / (repcnt + 1), (under + 1) / (repcnt + 1)


def goseq(
    pwf: pl.DataFrame,
    gene2cat: Mapping[str, Sequence[str]],
    method: str = 'Wallenius',
    repcnt: int = 2000,
    seed: Optional[int] = None,
    terms: Optional[pl.DataFrame] = None
) -> pl.DataFrame:
    """
    Test every category for over- and under-representation of DE genes.

    Args:
        pwf: Output of nullp
        gene2cat: Gene -> categories
        method: 'Wallenius' (length-corrected), 'Sampling' (length-corrected,
                resampling) or 'Hypergeometric' (no correction)
        repcnt: Number of resamples for the Sampling method
        seed: Random seed for the Sampling method
        terms: Optional table with category, term and ontology columns

    Returns:
        DataFrame sorted by over_represented_pvalue with category,
        over_represented_pvalue, under_represented_pvalue, num_de_in_cat,
        num_in_cat, term, ontology and over_represented_padj columns
    """
    method_key = method.lower()
    if method_key not in METHODS:
        raise ValueError(f"Unknown method: {method}. Use Wallenius, Sampling or Hypergeometric")

    annotated = pwf.filter(pl.col('gene_id').is_in(list(gene2cat.keys())))
    dropped = pwf.height - annotated.height
    if dropped:
        logging.warning(f"{dropped} genes ({100 * dropped / pwf.height:.1f}%) have no category "
                        f"annotation and are excluded")
    if annotated.height == 0:
        raise ValueError("None of the genes have category annotations")

    genes = annotated['gene_id'].to_list()
    de = annotated['de'].to_numpy().astype(np.float64)
    weights = annotated['pwf'].to_numpy().astype(np.float64)
    categories, matrix = _membership_matrix(genes, gene2cat)

    n_genes = len(genes)
    num_de = int(de.sum())
    num_in_cat = np.asarray(matrix.sum(axis=0)).ravel().astype(np.int64)
    num_de_in_cat = np.asarray(matrix.T @ de).ravel().astype(np.int64)

    logging.info(f"Testing {len(categories)} categories over {n_genes} genes "
                 f"({num_de} DE) with the {method} method")

    if method_key == 'sampling':
        over, under = _sampling_pvalues(matrix, weights, num_de, num_de_in_cat, repcnt, seed)
    else:
        weight_in_cat = np.asarray(matrix.T @ weights).ravel()
        total_weight = weights.sum()
        over = np.ones(len(categories))
        under = np.ones(len(categories))
        for j in range(len(categories)):
            k, size = int(num_de_in_cat[j]), int(num_in_cat[j])
            if method_key == 'hypergeometric':
                pvals = hypergeometric_pvalues(k, n_genes, size, num_de)
            else:
                if size == n_genes:
                    odds = 1.0
                else:
                    odds = (weight_in_cat[j] / size) / ((total_weight - weight_in_cat[j]) / (n_genes - size))
                pvals = wallenius_pvalues(k, n_genes, size, num_de, odds)
            over[j] = pvals['over']
            under[j] = pvals['under']

    results = pl.DataFrame({
        'category': categories,
        'over_represented_pvalue': over,
        'under_represented_pvalue': under,
        'num_de_in_cat': num_de_in_cat,
        'num_in_cat': num_in_cat,
    })

    if terms is not None:
        results = results.join(terms.select(['category', 'term', 'ontology']), on='category', how='left')
    else:
        results = results.with_columns([
            pl.lit(None, dtype=pl.Utf8).alias('term'),
            pl.lit(None, dtype=pl.Utf8).alias('ontology'),
        ])

    results = results.with_columns(
        pl.Series('over_represented_padj', adjust_pvalues(results['over_represented_pvalue'].to_list()),
                  dtype=pl.Float64)
    )
    return results.sort(['over_represented_pvalue', 'category'])
