"""
Preranked gene set enrichment analysis.

Wraps gseapy's prerank implementation and reshapes its report into a
polars table with one row per gene set.
"""

import logging
import warnings
from typing import Dict, List

import gseapy as gp
import numpy as np
import pandas as pd
import polars as pl

from rnaseq_enrichment.ranking import sorted_ranking
from rnaseq_enrichment.stats import running_enrichment

GSEA_SCHEMA = {
    'pathway': pl.Utf8,
    'es': pl.Float64,
    'nes': pl.Float64,
    'p_value': pl.Float64,
    'padj': pl.Float64,
    'fwer': pl.Float64,
    'size': pl.Int64,
    'leading_edge': pl.List(pl.Utf8),
}


def validate_gene_ranking(ranking: Dict[str, float]) -> Dict[str, float]:
    """
    Drop entries with blank identifiers or non-finite scores.

    Args:
        ranking: Gene -> score mapping

    Returns:
        Cleaned mapping
    """
    valid = {}
    invalid_count = 0
    for gene, score in ranking.items():
        gene = str(gene).strip()
        try:
            score = float(score)
        except (TypeError, ValueError):
            invalid_count += 1
            continue
        if not gene or not np.isfinite(score):
            invalid_count += 1
            continue
        valid[gene] = score

    if invalid_count:
        logging.warning(f"GSEA validation: removed {invalid_count}/{len(ranking)} genes with invalid scores")
    return valid


def _first_present(row: pd.Series, keys: List[str], default=None):
    for key in keys:
        if key in row.index and pd.notna(row[key]):
            return row[key]
    return default


def _parse_report(report: pd.DataFrame, gene_sets: Dict[str, List[str]], ranked_genes: set) -> pl.DataFrame:
    """Normalise the gseapy report across gseapy versions."""
    report = report.copy()
    if 'Term' not in report.columns:
        # Older gseapy releases index the report by term
        report = report.reset_index().rename(columns={'index': 'Term'})

    rows = []
    for _, row in report.iterrows():
        term = str(row['Term'])
        lead = _first_present(row, ['Lead_genes', 'ledge_genes'], '')
        leading_edge = [g for g in str(lead).split(';') if g]
        members = gene_sets.get(term, [])
        rows.append({
            'pathway': term,
            'es': float(_first_present(row, ['ES', 'es'], np.nan)),
            'nes': float(_first_present(row, ['NES', 'nes'], np.nan)),
            'p_value': float(_first_present(row, ['NOM p-val', 'pval'], np.nan)),
            'padj': float(_first_present(row, ['FDR q-val', 'fdr'], np.nan)),
            'fwer': float(_first_present(row, ['FWER p-val', 'fwerp'], np.nan)),
            'size': sum(1 for g in members if g in ranked_genes),
            'leading_edge': leading_edge,
        })

    return pl.DataFrame(rows, schema=GSEA_SCHEMA)


def run_gsea_prerank(
    ranks: Dict[str, float],
    gene_sets: Dict[str, List[str]],
    min_size: int = 15,
    max_size: int = 500,
    permutation_num: int = 1000,
    seed: int = 42,
    threads: int = 1
) -> pl.DataFrame:
    """
    Run preranked GSEA.

    Args:
        ranks: Gene -> score mapping (e.g. logFC or signed -log10 p-value)
        gene_sets: Gene set name -> member genes
        min_size: Minimum number of ranked genes in a set
        max_size: Maximum number of ranked genes in a set
        permutation_num: Number of gene-set permutations
        seed: Random seed
        threads: Worker processes for gseapy

    Returns:
        DataFrame with pathway, es, nes, p_value, padj, fwer, size and
        leading_edge columns, sorted by p_value
    """
    ranks = validate_gene_ranking(ranks)
    if not ranks:
        raise ValueError("Empty or invalid gene ranking after validation")
    if not gene_sets:
        raise ValueError("No gene sets supplied for GSEA")

    ordered = sorted_ranking(ranks)
    rnk = pd.Series(
        [score for _, score in ordered],
        index=[gene for gene, _ in ordered],
        name='score'
    )

    logging.info(
        f"Running GSEA prerank: {len(rnk)} genes, "
        f"{len(gene_sets)} gene sets, {permutation_num} permutations"
    )

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            pre_res = gp.prerank(
                rnk=rnk,
                gene_sets=gene_sets,
                min_size=min_size,
                max_size=max_size,
                permutation_num=permutation_num,
                outdir=None,
                no_plot=True,
                seed=seed,
                threads=threads,
                verbose=False
            )
    except Exception as e:
        logging.error(f"GSEA failed: {e}")
        raise RuntimeError(f"GSEA analysis failed: {e}") from e

    results = _parse_report(pre_res.res2d, gene_sets, set(rnk.index))
    results = results.sort(['p_value', 'pathway'], nulls_last=True)

    n_up = results.filter(pl.col('nes') > 0).height
    logging.info(f"GSEA complete: {results.height} gene sets tested, "
                 f"{n_up} with positive NES, {results.height - n_up} with negative NES")
    return results


def running_enrichment_score(
    ranks: Dict[str, float],
    gene_set: List[str],
    weight: float = 1.0
) -> pl.DataFrame:
    """
    Running enrichment score of one gene set along the ranked list.

    Args:
        ranks: Gene -> score mapping
        gene_set: Members of the set
        weight: Exponent applied to scores of hits (1 for classic GSEA)

    Returns:
        DataFrame with rank (1-based), gene, score, hit and running_es columns.
        The enrichment score is the extreme value of running_es.
    """
    ordered = sorted_ranking(validate_gene_ranking(ranks))
    genes = [gene for gene, _ in ordered]
    scores = np.array([score for _, score in ordered], dtype=np.float64)
    members = set(gene_set)
    hits = np.array([g in members for g in genes], dtype=np.bool_)

    if not hits.any():
        raise ValueError("None of the gene set members are present in the ranking")

    running = running_enrichment(scores, hits, weight)
    return pl.DataFrame({
        'rank': np.arange(1, len(genes) + 1),
        'gene': genes,
        'score': scores,
        'hit': hits,
        'running_es': running,
    })
