"""
Gene ranking and significance selection from differential-expression results.
"""

import logging
import sys
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import polars as pl

RANK_METHODS = ('log_fc', 'signed_p')


def _require_columns(df: pl.DataFrame, columns) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns for ranking: {', '.join(missing)}")


def rank_exclusions(df: pl.DataFrame, id_column: str = 'gene_id') -> int:
    """Number of rows that cannot be ranked because the identifier is missing."""
    _require_columns(df, [id_column])
    return int(df[id_column].is_null().sum())


def compute_scores(df: pl.DataFrame, method: str = 'signed_p') -> pl.Series:
    """
    Compute the per-gene ranking score.

    Args:
        df: DE results with log_fc and, for signed_p, p_value columns
        method: 'log_fc' for the raw fold change or 'signed_p' for
                -log10(p) * sign(logFC)

    Returns:
        Series of scores aligned with the rows of df
    """
    if method == 'log_fc':
        _require_columns(df, ['log_fc'])
        return df['log_fc'].cast(pl.Float64).alias('score')
    if method == 'signed_p':
        _require_columns(df, ['log_fc', 'p_value'])
        # p == 0 would give an infinite score
        p = df['p_value'].cast(pl.Float64).clip(lower_bound=sys.float_info.min)
        return (-p.log10() * df['log_fc'].cast(pl.Float64).sign()).alias('score')
    raise ValueError(f"Unknown ranking method: {method}. Use one of {', '.join(RANK_METHODS)}")


def build_rank_vector(
    df: pl.DataFrame,
    id_column: str = 'gene_id',
    method: str = 'signed_p'
) -> Dict[str, float]:
    """
    Build a gene -> score mapping for preranked enrichment.

    Rows with a missing identifier or a score that cannot be computed are
    excluded. Duplicated identifiers keep their first occurrence.

    Args:
        df: DE results table
        id_column: Column holding the gene identifiers used as keys
        method: Scoring policy, see compute_scores

    Returns:
        Dictionary of gene identifier to score
    """
    _require_columns(df, [id_column])
    scored = df.select([
        pl.col(id_column).cast(pl.Utf8).alias('id'),
        compute_scores(df, method),
    ])

    missing_ids = scored['id'].is_null().sum()
    scored = scored.filter(pl.col('id').is_not_null())
    missing_scores = scored.filter(~pl.col('score').is_finite() | pl.col('score').is_null()).height
    scored = scored.filter(pl.col('score').is_not_null() & pl.col('score').is_finite())

    duplicated = scored.height - scored['id'].n_unique()
    scored = scored.unique(subset='id', keep='first', maintain_order=True)

    if missing_ids:
        logging.info(f"Excluded {missing_ids} genes without a {id_column} identifier from ranking")
    if missing_scores:
        logging.warning(f"Excluded {missing_scores} genes with no usable {method} score")
    if duplicated:
        logging.warning(f"Dropped {duplicated} duplicated {id_column} identifiers, keeping the first")

    return dict(zip(scored['id'].to_list(), scored['score'].to_list()))


def sorted_ranking(ranks: Dict[str, float]) -> List[Tuple[str, float]]:
    """Order a ranking by score descending, breaking ties by identifier."""
    return sorted(ranks.items(), key=lambda item: (-item[1], item[0]))


def _significance_mask(
    fdr_threshold: float,
    lfc_threshold: Optional[float] = None,
    direction: str = 'both'
) -> pl.Expr:
    if direction not in ('both', 'up', 'down'):
        raise ValueError(f"Unknown direction: {direction}")

    mask = pl.col('fdr').is_not_null() & (pl.col('fdr') < fdr_threshold)
    if lfc_threshold is not None:
        mask = mask & (pl.col('log_fc').abs() > lfc_threshold)
    if direction == 'up':
        mask = mask & (pl.col('log_fc') > 0)
    elif direction == 'down':
        mask = mask & (pl.col('log_fc') < 0)
    return mask


def select_significant_genes(
    df: pl.DataFrame,
    fdr_threshold: float = 0.01,
    lfc_threshold: Optional[float] = None,
    id_column: str = 'gene_id',
    direction: str = 'both'
) -> Set[str]:
    """
    Select differentially expressed genes.

    Args:
        df: DE results with fdr and log_fc columns
        fdr_threshold: Keep genes with FDR strictly below this value
        lfc_threshold: If given, keep genes with |logFC| strictly above it
        id_column: Identifier column to report
        direction: 'both', 'up' or 'down'

    Returns:
        Set of identifiers of significant genes
    """
    _require_columns(df, [id_column, 'fdr', 'log_fc'])
    selected = df.filter(
        pl.col(id_column).is_not_null() & _significance_mask(fdr_threshold, lfc_threshold, direction)
    )
    genes = set(selected[id_column].cast(pl.Utf8).to_list())
    logging.info(f"Selected {len(genes)} significant genes (FDR < {fdr_threshold}"
                 + (f", |logFC| > {lfc_threshold}" if lfc_threshold is not None else "") + ")")
    return genes


def significance_flags(
    df: pl.DataFrame,
    fdr_threshold: float = 0.01,
    lfc_threshold: Optional[float] = None,
    id_column: str = 'gene_id'
) -> Dict[str, int]:
    """
    Binary significance indicator for every gene with an identifier.

    Genes with a missing FDR are flagged 0.

    Returns:
        Dictionary of identifier to 1 (significant) or 0
    """
    _require_columns(df, [id_column, 'fdr', 'log_fc'])
    flagged = (
        df.filter(pl.col(id_column).is_not_null())
        .select([
            pl.col(id_column).cast(pl.Utf8).alias('id'),
            _significance_mask(fdr_threshold, lfc_threshold).fill_null(False).cast(pl.Int64).alias('flag'),
        ])
        .unique(subset='id', keep='first', maintain_order=True)
    )
    return dict(zip(flagged['id'].to_list(), flagged['flag'].to_list()))


def gene_lengths(
    df: pl.DataFrame,
    genes: List[str],
    id_column: str = 'gene_id',
    length_column: str = 'median_tx_length'
) -> np.ndarray:
    """Length covariate aligned with genes; NaN where unknown.

    Duplicated identifiers keep their first row, as in significance_flags.
    """
    _require_columns(df, [id_column, length_column])
    first = (
        df.filter(pl.col(id_column).is_not_null())
        .unique(subset=id_column, keep='first', maintain_order=True)
    )
    lookup = dict(zip(
        first[id_column].cast(pl.Utf8).to_list(),
        first[length_column].cast(pl.Float64).to_list()
    ))
    return np.array([
        lookup.get(g) if lookup.get(g) is not None else np.nan
        for g in genes
    ], dtype=np.float64)
