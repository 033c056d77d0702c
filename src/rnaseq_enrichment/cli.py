#!/usr/bin/env python3
"""
Command line interface for the RNA-seq enrichment pipeline.
"""

import argparse
import logging
import sys
import tempfile
from pathlib import Path

import tomli
from tomli_w import dump

from .pipeline import EnrichmentPipeline
from .utils import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run GSEA, length-bias corrected GO and KEGG enrichment on DE results"
    )

    parser.add_argument(
        "config_file",
        type=str,
        help="Path to TOML configuration file"
    )

    input_group = parser.add_argument_group("Input file overrides")
    input_group.add_argument(
        "--de-results",
        type=str,
        help="Override differential expression results file path"
    )
    input_group.add_argument(
        "--gene-sets",
        type=str,
        help="Override gene set collection file path (GMT, JSON or TSV)"
    )
    input_group.add_argument(
        "--gene-categories",
        type=str,
        help="Override gene to GO category file path"
    )
    input_group.add_argument(
        "--category-terms",
        type=str,
        help="Override GO category description file path"
    )

    output_group = parser.add_argument_group("Output configuration overrides")
    output_group.add_argument(
        "--output-dir",
        type=str,
        help="Override output directory"
    )

    analysis_group = parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--run",
        nargs="+",
        choices=["gsea", "goseq", "kegg"],
        help="Analyses to run"
    )
    analysis_group.add_argument(
        "--fdr-threshold",
        type=float,
        help="Override FDR threshold for significant genes"
    )
    analysis_group.add_argument(
        "--lfc-threshold",
        type=float,
        help="Override absolute log fold change threshold for significant genes"
    )
    analysis_group.add_argument(
        "--permutations",
        type=int,
        help="Override number of GSEA permutations"
    )
    analysis_group.add_argument(
        "--rank-method",
        choices=["log_fc", "signed_p"],
        help="Override GSEA ranking score"
    )
    analysis_group.add_argument(
        "--goseq-method",
        choices=["Wallenius", "Sampling", "Hypergeometric"],
        help="Override GO enrichment null distribution"
    )
    analysis_group.add_argument(
        "--organism",
        type=str,
        help="Override KEGG organism code"
    )
    analysis_group.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace):
    """Update configuration with command line overrides."""
    for section in ('input', 'output', 'analysis', 'gsea', 'goseq', 'kegg'):
        config.setdefault(section, {})

    if args.de_results:
        config['input']['de_results_file'] = args.de_results
    if args.gene_sets:
        config['input']['gene_sets_file'] = args.gene_sets
    if args.gene_categories:
        config['input']['gene_categories_file'] = args.gene_categories
    if args.category_terms:
        config['input']['category_terms_file'] = args.category_terms

    if args.output_dir:
        config['output']['directory'] = args.output_dir

    if args.run:
        config['analysis']['run'] = args.run
    if args.fdr_threshold is not None:
        config['analysis']['fdr_threshold'] = args.fdr_threshold
    if args.lfc_threshold is not None:
        config['analysis']['lfc_threshold'] = args.lfc_threshold
    if args.permutations is not None:
        config['gsea']['permutations'] = args.permutations
    if args.rank_method:
        config['gsea']['rank_method'] = args.rank_method
    if args.goseq_method:
        config['goseq']['method'] = args.goseq_method
    if args.organism:
        config['kegg']['organism'] = args.organism

    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        with open(args.config_file, 'rb') as f:
            config = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        print(f"Error loading configuration file: {str(e)}")
        sys.exit(1)

    config = update_config(config, args)

    output_dir = Path(config['output'].get('directory', config['output'].get('output_dir', 'results')))
    setup_logging(output_dir / 'logs', level=logging.DEBUG if args.verbose else logging.INFO)

    logging.info("Starting RNA-seq enrichment pipeline")
    logging.info(f"Using configuration file: {args.config_file}")

    with tempfile.TemporaryDirectory() as tmp_dir:
        temp_config_path = Path(tmp_dir) / "config.toml"
        with open(temp_config_path, 'wb') as f:
            dump(config, f)

        try:
            pipeline = EnrichmentPipeline(str(temp_config_path))
            pipeline.run()
            pipeline.save_results(str(output_dir))
            logging.info("Pipeline execution completed successfully")
        except (ValueError, FileNotFoundError, RuntimeError) as e:
            logging.error(f"Pipeline execution failed: {str(e)}")
            sys.exit(1)


if __name__ == "__main__":
    main()
