"""Tests for length-bias corrected category enrichment."""

import numpy as np
import polars as pl
import pytest

from rnaseq_enrichment.goseq import nullp, pwf_bins, goseq


def _by_category(results):
    return {row['category']: row for row in results.iter_rows(named=True)}


def test_nullp_monotone(length_biased_data):
    """Weighting function rises with length and stays strictly positive."""
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    assert pwf.columns == ['gene_id', 'de', 'bias_data', 'pwf']
    assert pwf.height == 2000

    ordered = pwf.sort('bias_data')['pwf'].to_numpy()
    assert np.all(np.diff(ordered) >= 0)
    assert ordered.min() > 0
    assert ordered[-1] > ordered[0]


def test_nullp_missing_lengths():
    """Genes without a length receive the median weight."""
    flags = {'a': 0, 'b': 1, 'c': 0, 'd': 1, 'e': 0}
    lengths = {'a': 100.0, 'b': 400.0, 'c': 200.0, 'd': 800.0, 'e': None}
    pwf = nullp(flags, lengths)
    weights = dict(zip(pwf['gene_id'].to_list(), pwf['pwf'].to_list()))
    known = [weights[g] for g in 'abcd']
    assert weights['e'] == pytest.approx(float(np.median(known)))
    assert np.isnan(pwf.filter(pl.col('gene_id') == 'e')['bias_data'][0])


def test_nullp_sequence_lengths():
    """Lengths may be given as a sequence aligned with the flags."""
    pwf = nullp({'a': 0, 'b': 1}, [100, 1000])
    assert pwf['bias_data'].to_list() == [100.0, 1000.0]
    with pytest.raises(ValueError, match="lengths"):
        nullp({'a': 0, 'b': 1}, [100])


def test_nullp_errors():
    with pytest.raises(ValueError, match="No genes"):
        nullp({}, {})
    with pytest.raises(ValueError, match="No differentially expressed genes"):
        nullp({'a': 0, 'b': 0}, {'a': 10.0, 'b': 20.0})
    with pytest.raises(ValueError, match="length data"):
        nullp({'a': 1, 'b': 0}, {'a': None, 'b': None})


def test_pwf_bins(length_biased_data):
    """Binned DE proportion increases from short to long genes."""
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    bins = pwf_bins(pwf, bin_size=200)
    assert bins.columns == ['mean_length', 'proportion_de', 'mean_pwf', 'n_genes']
    assert bins.height == 10
    assert bins['n_genes'].to_list() == [200] * 10
    assert bins['mean_length'].is_sorted()
    assert bins['proportion_de'][-1] > bins['proportion_de'][0]

    with pytest.raises(ValueError, match="bin_size"):
        pwf_bins(pwf, bin_size=0)


def test_goseq_output_columns(length_biased_data):
    """Result table carries counts, p-values and adjusted p-values."""
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    results = goseq(pwf, length_biased_data['gene2cat'])

    assert results.columns == [
        'category', 'over_represented_pvalue', 'under_represented_pvalue',
        'num_de_in_cat', 'num_in_cat', 'term', 'ontology', 'over_represented_padj',
    ]
    assert sorted(results['category'].to_list()) == ['GO:long', 'GO:longest', 'GO:mixed', 'GO:short']
    assert results['over_represented_pvalue'].is_sorted()

    rows = _by_category(results)
    assert rows['GO:long']['num_in_cat'] == 200
    assert rows['GO:longest']['num_in_cat'] == 50
    assert rows['GO:mixed']['num_in_cat'] == 400
    de_genes = {g for g, flag in length_biased_data['flags'].items() if flag}
    long_genes = [g for g, cats in length_biased_data['gene2cat'].items() if 'GO:long' in cats]
    assert rows['GO:long']['num_de_in_cat'] == len(de_genes.intersection(long_genes))

    for row in rows.values():
        assert 0 <= row['over_represented_pvalue'] <= 1
        assert 0 <= row['under_represented_pvalue'] <= 1
        assert row['over_represented_padj'] >= row['over_represented_pvalue']


def test_length_correction_weakens_long_gene_enrichment(length_biased_data):
    """Categories of long genes look less enriched once length bias is accounted for."""
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    corrected = _by_category(goseq(pwf, length_biased_data['gene2cat'], method='Wallenius'))
    uncorrected = _by_category(goseq(pwf, length_biased_data['gene2cat'], method='Hypergeometric'))

    assert uncorrected['GO:long']['over_represented_pvalue'] < 0.001
    assert corrected['GO:long']['over_represented_pvalue'] > uncorrected['GO:long']['over_represented_pvalue']
    assert corrected['GO:short']['under_represented_pvalue'] > uncorrected['GO:short']['under_represented_pvalue']


def test_equal_lengths_match_hypergeometric(length_biased_data):
    """Without length variation Wallenius and the hypergeometric test agree."""
    flags = length_biased_data['flags']
    pwf = nullp(flags, {g: 1000.0 for g in flags})
    wallenius = _by_category(goseq(pwf, length_biased_data['gene2cat'], method='Wallenius'))
    hyper = _by_category(goseq(pwf, length_biased_data['gene2cat'], method='hypergeometric'))
    for category, row in wallenius.items():
        assert row['over_represented_pvalue'] == pytest.approx(
            hyper[category]['over_represented_pvalue'], abs=1e-6)


def test_sampling_method(length_biased_data):
    """Resampled p-values are reproducible for a fixed seed and never zero."""
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    first = goseq(pwf, length_biased_data['gene2cat'], method='Sampling', repcnt=100, seed=7)
    second = goseq(pwf, length_biased_data['gene2cat'], method='Sampling', repcnt=100, seed=7)
    assert first.equals(second)
    assert first['over_represented_pvalue'].min() >= 1 / 101
    assert first['under_represented_pvalue'].max() <= 1.0


def test_goseq_terms_and_unannotated():
    """Unannotated genes are ignored and term descriptions are joined."""
    flags = {'a': 1, 'b': 0, 'c': 1, 'd': 0, 'e': 0}
    lengths = {'a': 500.0, 'b': 600.0, 'c': 700.0, 'd': 800.0, 'e': 900.0}
    gene2cat = {'a': ['GO:1'], 'b': ['GO:1', 'GO:2'], 'c': ['GO:2'], 'd': ['GO:2']}
    terms = pl.DataFrame({
        'category': ['GO:1', 'GO:2'],
        'term': ['cell cycle', 'apoptosis'],
        'ontology': ['BP', 'BP'],
    })
    results = goseq(nullp(flags, lengths), gene2cat, method='Hypergeometric', terms=terms)
    rows = _by_category(results)
    assert rows['GO:1']['term'] == 'cell cycle'
    assert rows['GO:2']['num_in_cat'] == 3
    assert rows['GO:2']['num_de_in_cat'] == 1


def test_goseq_errors(length_biased_data):
    pwf = nullp(length_biased_data['flags'], length_biased_data['lengths'])
    with pytest.raises(ValueError, match="Unknown method"):
        goseq(pwf, length_biased_data['gene2cat'], method='Fisher')
    with pytest.raises(ValueError, match="annotations"):
        goseq(pwf, {'other': ['GO:1']})
