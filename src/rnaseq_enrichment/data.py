"""
Loaders for differential-expression tables, gene-set collections and
gene-to-category annotations.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

import polars as pl

from rnaseq_enrichment.config import DEFAULT_COLUMNS

REQUIRED_COLUMNS = ('gene_id', 'log_fc')
FLOAT_COLUMNS = ('log_fc', 'p_value', 'fdr', 'median_tx_length')
ID_COLUMNS = ('gene_id', 'entrez', 'symbol')


def _read_table(file_path: Path) -> pl.DataFrame:
    """Read a table, choosing the reader from the file suffix."""
    suffix = file_path.suffix.lower()
    if suffix == '.parquet':
        return pl.read_parquet(file_path)
    if suffix in ('.arrow', '.ipc', '.feather'):
        return pl.read_ipc(file_path)
    separator = ',' if suffix == '.csv' else '\t'
    # Identifier columns stay strings so Entrez IDs are not parsed as integers
    return pl.read_csv(
        file_path,
        separator=separator,
        has_header=True,
        infer_schema_length=0,
        null_values=['NA', ''],
    )


def _id_to_string(column: str, dtype) -> pl.Expr:
    """Identifier column as strings; float IDs (integers stored with NA) lose the '.0'."""
    if dtype in (pl.Float32, pl.Float64):
        return pl.col(column).cast(pl.Int64, strict=False).cast(pl.Utf8)
    return pl.col(column).cast(pl.Utf8)


def load_de_results(
    file_path: Union[str, Path],
    columns: Optional[Dict[str, str]] = None
) -> pl.DataFrame:
    """
    Load a differential-expression results table.

    Args:
        file_path: Path to a TSV, CSV, Parquet or Arrow IPC file
        columns: Mapping of source column names to canonical names
                 (defaults to the course table layout)

    Returns:
        DataFrame with canonical column names (gene_id, entrez, symbol,
        log_fc, p_value, fdr, median_tx_length) where present
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"DE results file not found: {file_path}")

    df = _read_table(file_path)

    mapping = columns if columns is not None else DEFAULT_COLUMNS
    rename = {src: dst for src, dst in mapping.items() if src in df.columns and src != dst}
    df = df.rename(rename)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"DE results table is missing required columns: {', '.join(missing)}")

    casts = [pl.col(col).cast(pl.Float64, strict=False) for col in FLOAT_COLUMNS if col in df.columns]
    casts += [_id_to_string(col, df.schema[col]) for col in ID_COLUMNS if col in df.columns]
    df = df.with_columns(casts)

    logging.info(f"Loaded {df.height} genes from {file_path.name}")
    return df


def _normalise_members(genes: Iterable) -> List[str]:
    return sorted({str(g).strip() for g in genes if g is not None and str(g).strip()})


def read_gmt(file_path: Path) -> Dict[str, List[str]]:
    """
    Read a GMT file: one set per line, name, description, then members.

    Args:
        file_path: Path to the GMT file

    Returns:
        Dictionary of set name to member genes
    """
    gene_sets = {}
    with open(file_path, 'r') as f:
        for line_number, line in enumerate(f, start=1):
            parts = line.rstrip('\n').split('\t')
            if len(parts) < 2 or not parts[0]:
                if line.strip():
                    logging.warning(f"Skipping malformed GMT line {line_number} in {file_path}")
                continue
            name = parts[0]
            if name in gene_sets:
                logging.warning(f"Duplicate gene set {name} in {file_path}, merging members")
                gene_sets[name] = _normalise_members(gene_sets[name] + parts[2:])
            else:
                gene_sets[name] = _normalise_members(parts[2:])
    return gene_sets


def load_gene_sets(file_path: Union[str, Path]) -> Dict[str, List[str]]:
    """
    Load a gene-set collection.

    Supported formats are GMT, JSON ({name: [genes]}) and a two-column
    table with gene_set and gene_id columns.

    Args:
        file_path: Path to the collection

    Returns:
        Dictionary of set name to sorted, unique member genes
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Gene set file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == '.gmt':
        gene_sets = read_gmt(file_path)
    elif suffix == '.json':
        with open(file_path, 'r') as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"Expected a JSON object of gene sets in {file_path}")
        gene_sets = {str(name): _normalise_members(genes) for name, genes in raw.items()}
    else:
        df = _read_table(file_path)
        if 'gene_set' not in df.columns or 'gene_id' not in df.columns:
            raise ValueError("Gene set table needs 'gene_set' and 'gene_id' columns")
        grouped = df.drop_nulls(['gene_set', 'gene_id']).group_by('gene_set').agg(pl.col('gene_id'))
        gene_sets = {
            row['gene_set']: _normalise_members(row['gene_id'])
            for row in grouped.iter_rows(named=True)
        }

    logging.info(f"Loaded {len(gene_sets)} gene sets from {file_path.name}")
    return gene_sets


def filter_gene_sets(
    gene_sets: Dict[str, List[str]],
    min_size: int = 1,
    max_size: Optional[int] = None,
    universe: Optional[Set[str]] = None
) -> Dict[str, List[str]]:
    """
    Restrict gene sets to a universe and keep those within the size bounds.

    Args:
        gene_sets: Dictionary of set name to member genes
        min_size: Minimum set size (inclusive)
        max_size: Maximum set size (inclusive), unbounded if None
        universe: Optional set of genes to intersect each set with

    Returns:
        Filtered dictionary
    """
    filtered = {}
    for name, genes in gene_sets.items():
        members = [g for g in genes if g in universe] if universe is not None else list(genes)
        if len(members) < min_size:
            continue
        if max_size is not None and len(members) > max_size:
            continue
        filtered[name] = members

    dropped = len(gene_sets) - len(filtered)
    if dropped:
        logging.info(f"Dropped {dropped} of {len(gene_sets)} gene sets outside size range "
                     f"[{min_size}, {max_size}]")
    return filtered


def load_gene_categories(file_path: Union[str, Path]) -> Dict[str, List[str]]:
    """
    Load a gene-to-category annotation (e.g. GO terms per gene).

    Args:
        file_path: Table with gene_id and category columns

    Returns:
        Dictionary of gene to its categories
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Gene category file not found: {file_path}")

    df = _read_table(file_path)
    if 'gene_id' not in df.columns or 'category' not in df.columns:
        raise ValueError("Gene category table needs 'gene_id' and 'category' columns")

    grouped = df.drop_nulls(['gene_id', 'category']).group_by('gene_id').agg(pl.col('category'))
    gene2cat = {
        row['gene_id']: _normalise_members(row['category'])
        for row in grouped.iter_rows(named=True)
    }
    logging.info(f"Loaded categories for {len(gene2cat)} genes from {file_path.name}")
    return gene2cat


def load_category_terms(file_path: Optional[Union[str, Path]]) -> Optional[pl.DataFrame]:
    """
    Load category descriptions.

    Args:
        file_path: Table with category, term and optionally ontology columns, or None

    Returns:
        DataFrame with category, term and ontology columns, or None if no file provided
    """
    if file_path is None:
        return None

    df = _read_table(Path(file_path))
    if 'category' not in df.columns or 'term' not in df.columns:
        raise ValueError("Category term table needs 'category' and 'term' columns")
    if 'ontology' not in df.columns:
        df = df.with_columns(pl.lit(None, dtype=pl.Utf8).alias('ontology'))
    return df.select(['category', 'term', 'ontology']).unique(subset='category', keep='first')
