"""Shared fixtures for the test suite."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import polars as pl
import pytest


@pytest.fixture
def de_table():
    """Small DE results table in canonical column names."""
    return pl.DataFrame({
        'gene_id': ['ENSMUSG01', 'ENSMUSG02', 'ENSMUSG03', None, 'ENSMUSG05', 'ENSMUSG06'],
        'entrez': ['101', '102', None, '104', '105', '106'],
        'symbol': ['Gene1', 'Gene2', 'Gene3', 'Gene4', 'Gene5', 'Gene6'],
        'log_fc': [2.5, 0.1, -1.5, 3.0, -0.8, 1.2],
        'p_value': [1e-5, 0.4, 1e-4, 1e-6, 0.02, 0.001],
        'fdr': [0.001, 0.5, 0.005, 0.0001, 0.05, None],
        'median_tx_length': [2500.0, 1200.0, 3000.0, 800.0, None, 1800.0],
    })


@pytest.fixture
def length_biased_data():
    """
    2000 genes where the chance of being DE rises with length, annotated to
    four categories: two of long genes, one of short genes and one mixed.
    """
    rng = np.random.default_rng(0)
    n = 2000
    genes = [f"g{i:04d}" for i in range(n)]
    lengths = np.linspace(500, 10000, n)
    probability = 0.02 + 0.3 * (lengths - lengths.min()) / (lengths.max() - lengths.min())
    de = (rng.random(n) < probability).astype(int)

    gene2cat = {}
    for i, gene in enumerate(genes):
        cats = ['GO:mixed'] if i % 5 == 0 else []
        if i >= n - 200:
            cats.append('GO:long')
        if i >= n - 100 and i % 2 == 0:
            cats.append('GO:longest')
        if i < 200:
            cats.append('GO:short')
        if cats:
            gene2cat[gene] = cats

    flags = dict(zip(genes, de.tolist()))
    return {
        'genes': genes,
        'flags': flags,
        'lengths': dict(zip(genes, lengths.tolist())),
        'gene2cat': gene2cat,
    }
