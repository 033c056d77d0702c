"""Tests for the command line interface."""

import logging
from unittest.mock import patch

import pytest
from tomli_w import dump as tomli_w_dump

from rnaseq_enrichment.cli import parse_args, update_config, main


@pytest.fixture(autouse=True)
def restore_root_handlers():
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def config_file(tmp_path):
    de_file = tmp_path / 'de.tsv'
    de_file.write_text("GeneID\tlogFC\nE1\t1.0\n")
    path = tmp_path / 'config.toml'
    with open(path, 'wb') as f:
        tomli_w_dump({
            'input': {'de_results_file': str(de_file)},
            'output': {'directory': str(tmp_path / 'results')},
        }, f)
    return path


def test_parse_args():
    args = parse_args([
        'config.toml', '--run', 'goseq', 'kegg', '--fdr-threshold', '0.05',
        '--goseq-method', 'Sampling', '--organism', 'hsa',
    ])
    assert args.config_file == 'config.toml'
    assert args.run == ['goseq', 'kegg']
    assert args.fdr_threshold == 0.05
    assert args.goseq_method == 'Sampling'
    assert args.organism == 'hsa'
    assert not args.verbose


def test_parse_args_rejects_unknown_analysis():
    with pytest.raises(SystemExit):
        parse_args(['config.toml', '--run', 'reactome'])


def test_update_config():
    """Command line values override the file and create missing sections."""
    config = {'input': {'de_results_file': 'a.tsv'}, 'analysis': {'fdr_threshold': 0.01}}
    args = parse_args([
        'config.toml', '--de-results', 'b.tsv', '--output-dir', 'out',
        '--fdr-threshold', '0.1', '--lfc-threshold', '1', '--permutations', '50',
        '--rank-method', 'log_fc',
    ])
    config = update_config(config, args)
    assert config['input']['de_results_file'] == 'b.tsv'
    assert config['output']['directory'] == 'out'
    assert config['analysis']['fdr_threshold'] == 0.1
    assert config['analysis']['lfc_threshold'] == 1.0
    assert config['gsea'] == {'permutations': 50, 'rank_method': 'log_fc'}
    assert config['kegg'] == {}


def test_update_config_explicit_zero_and_terms():
    """An explicit zero is still an override, and the terms file can be replaced."""
    config = {'input': {'de_results_file': 'a.tsv'}, 'gsea': {'permutations': 1000}}
    args = parse_args(['config.toml', '--permutations', '0', '--category-terms', 'terms.tsv'])
    config = update_config(config, args)
    assert config['gsea']['permutations'] == 0
    assert config['input']['category_terms_file'] == 'terms.tsv'


def test_main_runs_pipeline(config_file, tmp_path):
    """main loads the configuration, runs the pipeline and saves results."""
    with patch('rnaseq_enrichment.cli.EnrichmentPipeline') as mock_pipeline:
        main([str(config_file), '--run', 'goseq'])

    mock_pipeline.return_value.run.assert_called_once()
    mock_pipeline.return_value.save_results.assert_called_once_with(str(tmp_path / 'results'))
    assert (tmp_path / 'results' / 'logs' / 'pipeline.log').exists()


def test_main_bad_config(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main([str(tmp_path / 'missing.toml')])
    assert exc_info.value.code == 1


def test_main_pipeline_error(config_file):
    """Pipeline errors exit with status 1."""
    with patch('rnaseq_enrichment.cli.EnrichmentPipeline', side_effect=ValueError("bad input")):
        with pytest.raises(SystemExit) as exc_info:
            main([str(config_file)])
    assert exc_info.value.code == 1
