"""
Tables and plots for presenting enrichment results.
"""

from pathlib import Path
from typing import Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import seaborn as sns
from matplotlib.figure import Figure

from rnaseq_enrichment.goseq import pwf_bins


def top_results(
    df: pl.DataFrame,
    by: str,
    n: int = 10,
    descending: bool = False,
    absolute: bool = False
) -> pl.DataFrame:
    """
    Sort a result table and keep the first n rows.

    Args:
        df: Result table
        by: Column to sort on
        n: Number of rows to keep
        descending: Sort from largest to smallest
        absolute: Sort on the absolute value of the column (e.g. NES)

    Returns:
        At most n rows of df
    """
    if by not in df.columns:
        raise ValueError(f"Column {by} not in results")
    if n < 0:
        raise ValueError("n must be non-negative")
    key = pl.col(by).abs() if absolute else pl.col(by)
    return df.sort(key, descending=descending, nulls_last=True).head(n)


def add_hit_percentage(df: pl.DataFrame) -> pl.DataFrame:
    """Percentage of a category's genes that are differentially expressed."""
    return df.with_columns(
        (pl.col('num_de_in_cat') * 100 / pl.col('num_in_cat')).alias('hits_perc')
    )


def _finish(fig: Figure, output_file: Optional[Union[str, Path]], dpi: int) -> Figure:
    fig.tight_layout()
    if output_file is not None:
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_file, dpi=dpi, bbox_inches='tight')
    return fig


def plot_gsea_nes(
    results: pl.DataFrame,
    n: int = 20,
    padj_cutoff: float = 0.05,
    output_file: Optional[Union[str, Path]] = None,
    dpi: int = 300
) -> Figure:
    """
    Horizontal bar chart of NES for the gene sets with the largest |NES|.

    Bars are coloured by whether padj is below padj_cutoff.
    """
    top = top_results(results, 'nes', n=n, descending=True, absolute=True)
    top = top.sort('nes').with_columns(
        pl.when(pl.col('padj') < padj_cutoff).then(pl.lit('yes')).otherwise(pl.lit('no')).alias('significant')
    ).to_pandas()

    fig, ax = plt.subplots(figsize=(8, max(3, 0.3 * len(top) + 1)))
    sns.barplot(
        data=top, x='nes', y='pathway', hue='significant',
        dodge=False, palette={'yes': '#d62728', 'no': '#7f7f7f'}, ax=ax
    )
    ax.axvline(0, color='black', linewidth=0.8)
    ax.set_xlabel('Normalised enrichment score')
    ax.set_ylabel('')
    ax.legend(title=f'padj < {padj_cutoff}', loc='lower right')
    return _finish(fig, output_file, dpi)


def plot_enrichment(
    curve: pl.DataFrame,
    title: str = '',
    output_file: Optional[Union[str, Path]] = None,
    dpi: int = 300
) -> Figure:
    """
    Enrichment plot of one gene set: running score above, hit positions below.

    Args:
        curve: Output of gsea.running_enrichment_score
        title: Plot title, typically the gene set name
    """
    fig, (ax_es, ax_hits) = plt.subplots(
        2, 1, figsize=(7, 4), sharex=True, gridspec_kw={'height_ratios': [4, 1]}
    )
    ranks = curve['rank'].to_numpy()
    running = curve['running_es'].to_numpy()

    ax_es.plot(ranks, running, color='#2ca02c', linewidth=1.5)
    ax_es.axhline(0, color='black', linewidth=0.6)
    extreme = running[np.argmax(np.abs(running))] if len(running) else 0.0
    ax_es.axhline(extreme, color='#d62728', linestyle='--', linewidth=0.8)
    ax_es.set_ylabel('Enrichment score')
    ax_es.set_title(title)

    hit_ranks = curve.filter(pl.col('hit'))['rank'].to_numpy()
    ax_hits.vlines(hit_ranks, 0, 1, color='black', linewidth=0.5)
    ax_hits.set_yticks([])
    ax_hits.set_xlabel('Rank')
    return _finish(fig, output_file, dpi)


def plot_go_hits(
    results: pl.DataFrame,
    n: int = 10,
    output_file: Optional[Union[str, Path]] = None,
    dpi: int = 300
) -> Figure:
    """
    Percentage of DE genes per category for the most over-represented categories,
    sized by the number of DE genes and coloured by p-value.
    """
    top = add_hit_percentage(top_results(results, 'over_represented_pvalue', n=n))
    top = top.with_columns(
        pl.coalesce([pl.col('term'), pl.col('category')]).alias('label')
    ).to_pandas()

    fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(top) + 1)))
    points = ax.scatter(
        top['hits_perc'], top['label'],
        s=top['num_de_in_cat'] * 10,
        c=top['over_represented_pvalue'], cmap='viridis'
    )
    fig.colorbar(points, ax=ax, label='p-value')
    ax.invert_yaxis()
    ax.set_xlabel('Hits (%)')
    ax.set_ylabel('GO term')
    return _finish(fig, output_file, dpi)


def plot_kegg_dotplot(
    results: pl.DataFrame,
    n: int = 10,
    output_file: Optional[Union[str, Path]] = None,
    dpi: int = 300
) -> Figure:
    """Dot plot of gene ratio per pathway, sized by count and coloured by padj."""
    top = top_results(results, 'p_value', n=n)
    top = top.with_columns(
        (pl.col('gene_ratio').str.split('/').list.first().cast(pl.Float64)
         / pl.col('gene_ratio').str.split('/').list.last().cast(pl.Float64)).alias('ratio')
    ).sort('ratio').to_pandas()

    fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(top) + 1)))
    points = ax.scatter(
        top['ratio'], top['description'],
        s=top['count'] * 15,
        c=top['padj'], cmap='coolwarm_r'
    )
    fig.colorbar(points, ax=ax, label='padj')
    ax.set_xlabel('Gene ratio')
    ax.set_ylabel('')
    return _finish(fig, output_file, dpi)


def plot_pwf(
    pwf: pl.DataFrame,
    bin_size: int = 200,
    output_file: Optional[Union[str, Path]] = None,
    dpi: int = 300
) -> Figure:
    """Binned proportion of DE genes against length with the fitted weighting function."""
    bins = pwf_bins(pwf, bin_size=bin_size)
    fitted = pwf.filter(pl.col('bias_data').is_not_nan()).sort('bias_data')

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.scatter(bins['mean_length'].to_numpy(), bins['proportion_de'].to_numpy(),
               color='black', s=12, label=f'Bins of {bin_size} genes')
    ax.plot(fitted['bias_data'].to_numpy(), fitted['pwf'].to_numpy(),
            color='#1f77b4', linewidth=2, label='Weighting function')
    ax.set_xscale('log')
    ax.set_xlabel('Median transcript length (bp)')
    ax.set_ylabel('Proportion DE')
    ax.legend()
    return _finish(fig, output_file, dpi)
