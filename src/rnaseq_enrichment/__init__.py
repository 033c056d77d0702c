"""
RNA-seq Enrichment
==================

Gene-set enrichment workflows for RNA-seq differential expression results:
preranked GSEA, length-bias corrected GO over-representation and KEGG
pathway enrichment.
"""

from .pipeline import EnrichmentPipeline
from .config import PipelineConfig
from .data import (
    load_de_results as load_de_results,
    load_gene_sets as load_gene_sets,
    load_gene_categories as load_gene_categories,
    load_category_terms as load_category_terms,
    filter_gene_sets as filter_gene_sets,
)
from .ranking import (
    build_rank_vector as build_rank_vector,
    sorted_ranking as sorted_ranking,
    select_significant_genes as select_significant_genes,
    significance_flags as significance_flags,
)
from .gsea import (
    run_gsea_prerank as run_gsea_prerank,
    running_enrichment_score as running_enrichment_score,
)
from .goseq import nullp as nullp, goseq as goseq
from .kegg import (
    KEGGClient as KEGGClient,
    enrich_kegg as enrich_kegg,
    pathview as pathview,
    browse_kegg as browse_kegg,
)
from .visualise import top_results as top_results
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "EnrichmentPipeline",
    "PipelineConfig",
    "load_de_results",
    "load_gene_sets",
    "load_gene_categories",
    "load_category_terms",
    "filter_gene_sets",
    "build_rank_vector",
    "sorted_ranking",
    "select_significant_genes",
    "significance_flags",
    "run_gsea_prerank",
    "running_enrichment_score",
    "nullp",
    "goseq",
    "KEGGClient",
    "enrich_kegg",
    "pathview",
    "browse_kegg",
    "top_results",
    "setup_logging",
    "ensure_dir",
]
