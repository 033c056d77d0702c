"""Pipeline running the enrichment analyses configured in a TOML file."""

import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import polars as pl

from rnaseq_enrichment.config import PipelineConfig
from rnaseq_enrichment.data import (
    load_de_results,
    load_gene_sets,
    load_gene_categories,
    load_category_terms,
)
from rnaseq_enrichment.goseq import goseq, nullp
from rnaseq_enrichment.gsea import run_gsea_prerank, running_enrichment_score
from rnaseq_enrichment.kegg import KEGGClient, enrich_kegg, pathview
from rnaseq_enrichment.ranking import (
    build_rank_vector,
    rank_exclusions,
    gene_lengths,
    select_significant_genes,
    significance_flags,
)
from rnaseq_enrichment.stats import enrichment_score
from rnaseq_enrichment.utils import clean_for_json, ensure_dir
from rnaseq_enrichment.visualise import (
    plot_enrichment,
    plot_gsea_nes,
    plot_go_hits,
    plot_kegg_dotplot,
    plot_pwf,
)


class EnrichmentPipeline:
    """Main class for running the enrichment analyses on a DE results table."""

    def __init__(self, config_path: str):
        """Initialise the pipeline with a configuration file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config = PipelineConfig(config_path)
        self.logger = logging.getLogger(__name__)
        self.results: Dict[str, pl.DataFrame] = {}
        self.pwf: Optional[pl.DataFrame] = None
        self.ranks: Optional[Dict[str, float]] = None
        self.kegg_client: Optional[KEGGClient] = None
        self._load_input_data()

    def _load_input_data(self):
        """Load and validate input data files."""
        self.logger.debug("Starting to load input data files")

        for file_key, file_path in self.config.input_files.items():
            if not Path(file_path).is_file():
                error_msg = f"Input file not found: {file_path} (specified as {file_key})"
                self.logger.error(error_msg)
                raise FileNotFoundError(error_msg)

        self.de_results = load_de_results(
            self.config.input_files['de_results_file'],
            columns=self.config.columns
        )

        analyses = self.config.analyses
        self.gene_sets = None
        if 'gsea' in analyses:
            gene_sets_file = self.config.get_input_path('gene_sets_file')
            if gene_sets_file is None:
                raise ValueError("GSEA requires input.gene_sets_file")
            self.gene_sets = load_gene_sets(gene_sets_file)

        self.gene2cat = None
        self.category_terms = None
        if 'goseq' in analyses:
            categories_file = self.config.get_input_path('gene_categories_file')
            if categories_file is None:
                raise ValueError("Length-bias corrected GO analysis requires input.gene_categories_file")
            self.gene2cat = load_gene_categories(categories_file)
            self.category_terms = load_category_terms(self.config.get_input_path('category_terms_file'))

        self.logger.info(f"Loaded {self.de_results.height} genes with DE statistics")
        self.logger.info(f"Running analyses: {', '.join(analyses)}")
        self.logger.debug("Finished loading input data files")

    def run(self) -> Dict[str, pl.DataFrame]:
        """Run every configured analysis.

        Returns:
            Dictionary of analysis name to result table
        """
        self.logger.info("Starting enrichment pipeline")
        start_time = time.time()

        for step, name in enumerate(self.config.analyses, start=1):
            self.logger.info(f"Step {step}: {name}")
            if name == 'gsea':
                self.results['gsea'] = self.run_gsea()
            elif name == 'goseq':
                self.results['goseq'] = self.run_goseq()
            elif name == 'kegg':
                self.results['kegg'] = self.run_kegg()

        self.logger.info(f"Pipeline completed in {time.time() - start_time:.1f} seconds")
        return self.results

    def run_gsea(self) -> pl.DataFrame:
        """Preranked GSEA of the configured gene-set collection."""
        params = self.config.gsea_params
        id_column = params.get('id_column', 'entrez')
        excluded = rank_exclusions(self.de_results, id_column)
        self.logger.info(f"{excluded} of {self.de_results.height} genes have no {id_column} identifier "
                         f"and are left out of the ranking")
        self.ranks = build_rank_vector(
            self.de_results,
            id_column=id_column,
            method=params.get('rank_method', 'signed_p')
        )
        return run_gsea_prerank(
            self.ranks,
            self.gene_sets,
            min_size=params.get('min_size', 15),
            max_size=params.get('max_size', 500),
            permutation_num=params.get('permutations', 1000),
            seed=params.get('seed', 42),
            threads=params.get('threads', 1)
        )

    def run_goseq(self) -> pl.DataFrame:
        """GO over-representation corrected for transcript length."""
        params = self.config.goseq_params
        id_column = params.get('id_column', 'gene_id')
        flags = significance_flags(
            self.de_results,
            fdr_threshold=self.config.fdr_threshold,
            lfc_threshold=self.config.lfc_threshold,
            id_column=id_column
        )
        lengths = gene_lengths(self.de_results, list(flags.keys()), id_column=id_column)
        self.pwf = nullp(flags, lengths)
        return goseq(
            self.pwf,
            self.gene2cat,
            method=params.get('method', 'Wallenius'),
            repcnt=params.get('repcnt', 2000),
            seed=params.get('seed'),
            terms=self.category_terms
        )

    def _get_kegg_client(self) -> KEGGClient:
        if self.kegg_client is None:
            params = self.config.kegg_params
            self.kegg_client = KEGGClient(
                cache_dir=params.get('cache_dir'),
                timeout=params.get('timeout', 30.0),
                max_age_days=params.get('cache_days', 30.0)
            )
        return self.kegg_client

    def run_kegg(self) -> pl.DataFrame:
        """KEGG pathway over-representation of the significant genes."""
        params = self.config.kegg_params
        id_column = params.get('id_column', 'entrez')
        genes = select_significant_genes(
            self.de_results,
            fdr_threshold=self.config.fdr_threshold,
            lfc_threshold=self.config.lfc_threshold,
            id_column=id_column
        )
        universe = None
        if params.get('use_tested_universe', False):
            universe = self.de_results[id_column].drop_nulls().cast(pl.Utf8).to_list()
        return enrich_kegg(
            genes,
            organism=params.get('organism', 'mmu'),
            client=self._get_kegg_client(),
            p_cutoff=params.get('p_cutoff', 0.05),
            padj_cutoff=params.get('padj_cutoff'),
            min_size=params.get('min_size', 10),
            max_size=params.get('max_size', 500),
            universe=universe
        )

    def render_pathways(self, output_dir: Path) -> list:
        """Pathway diagrams for the configured or top-ranked KEGG pathways."""
        params = self.config.kegg_params
        id_column = params.get('id_column', 'entrez')
        pathway_ids = list(params.get('pathview_pathways', []))
        top = params.get('pathview_top', 1)
        if not pathway_ids and 'kegg' in self.results and top > 0:
            pathway_ids = self.results['kegg'].head(top)['pathway_id'].to_list()

        fold_changes = dict(
            self.de_results
            .filter(pl.col(id_column).is_not_null() & pl.col('log_fc').is_not_null())
            .select([pl.col(id_column).cast(pl.Utf8), 'log_fc'])
            .unique(subset=id_column, keep='first')
            .iter_rows()
        )
        written = []
        for pathway_id in pathway_ids:
            written.append(pathview(
                fold_changes,
                pathway_id,
                client=self._get_kegg_client(),
                out_dir=output_dir,
                limit=params.get('pathview_limit', 2.0)
            ))
        return written

    def save_results(self, output_dir: Optional[str] = None):
        """Save result tables, plots and the configuration used.

        Args:
            output_dir: Optional output directory path. If not provided,
                        uses the directory from the configuration.
        """
        if not self.results:
            self.logger.warning("No results to save. Run the pipeline first.")
            return

        output_path = Path(output_dir) if output_dir is not None else self.config.get_output_path()
        data_path = ensure_dir(output_path / 'data')
        plots_path = ensure_dir(output_path / 'plots')
        plot_format = self.config.output_config.get('plot_format', 'png')
        dpi = self.config.output_config.get('dpi', 300)
        top_n = self.config.output_config.get('top_n', 10)

        summary = {}
        for name, table in self.results.items():
            out_table = table
            if 'leading_edge' in table.columns:
                out_table = table.with_columns(pl.col('leading_edge').list.join(';'))
            table_file = data_path / f"{name}_results.tsv"
            out_table.write_csv(table_file, separator='\t')
            self.logger.info(f"Saved {name} results to {table_file}")
            summary[name] = {'n_tested': table.height}

        if 'gsea' in self.results:
            gsea = self.results['gsea']
            summary['gsea']['n_significant'] = gsea.filter(pl.col('padj') < 0.05).height
            if gsea.height:
                plot_gsea_nes(gsea, n=top_n * 2, output_file=plots_path / f"gsea_nes.{plot_format}", dpi=dpi)
                top_set = gsea['pathway'][0]
                if self.ranks and top_set in self.gene_sets:
                    curve = running_enrichment_score(self.ranks, self.gene_sets[top_set])
                    summary['gsea']['top_set'] = top_set
                    summary['gsea']['top_set_es'] = enrichment_score(curve['running_es'].to_numpy())
                    plot_enrichment(curve, title=top_set,
                                    output_file=plots_path / f"gsea_enrichment.{plot_format}", dpi=dpi)

        if 'goseq' in self.results:
            go = self.results['goseq']
            summary['goseq']['n_significant'] = go.filter(pl.col('over_represented_padj') < 0.05).height
            if go.height:
                plot_go_hits(go, n=top_n, output_file=plots_path / f"go_hits.{plot_format}", dpi=dpi)
            if self.pwf is not None:
                plot_pwf(self.pwf, output_file=plots_path / f"pwf.{plot_format}", dpi=dpi)
                self.pwf.write_csv(data_path / 'pwf.tsv', separator='\t')

        if 'kegg' in self.results:
            kegg = self.results['kegg']
            summary['kegg']['n_significant'] = kegg.height
            if kegg.height:
                plot_kegg_dotplot(kegg, n=top_n, output_file=plots_path / f"kegg_dotplot.{plot_format}", dpi=dpi)
            summary['kegg']['pathview'] = [str(p) for p in self.render_pathways(ensure_dir(output_path / 'pathview'))]

        plt.close('all')

        summary_file = data_path / 'summary.json'
        with open(summary_file, 'w') as f:
            json.dump(clean_for_json(summary), f, indent=2)
        self.logger.info(f"Saved summary to {summary_file}")

        config_file = data_path / 'pipeline_config.json'
        with open(config_file, 'w') as f:
            json.dump(clean_for_json(self.config.to_dict()), f, indent=2)
        self.logger.info(f"Saved configuration to {config_file}")

        # TOML copy of the configuration, loadable for a re-run
        self.config.save_config(data_path / 'pipeline_config.toml')
