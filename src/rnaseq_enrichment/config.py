"""Configuration handling for the RNA-seq enrichment pipeline."""

import tomli
import tomli_w
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


DEFAULT_COLUMNS = {
    'GeneID': 'gene_id',
    'Entrez': 'entrez',
    'Symbol': 'symbol',
    'logFC': 'log_fc',
    'pvalue': 'p_value',
    'FDR': 'fdr',
    'medianTxLength': 'median_tx_length',
}

ANALYSES = ('gsea', 'goseq', 'kegg')


class PipelineConfig:
    """Configuration class for the RNA-seq enrichment pipeline."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = config_path

        try:
            with open(config_path, "rb") as f:
                self.config = tomli.load(f)
        except FileNotFoundError:
            raise ValueError(f"Error loading configuration file: {config_path} does not exist")
        except tomli.TOMLDecodeError as e:
            raise ValueError(f"Error loading configuration file: {str(e)}")

        required_sections = ['input', 'output']
        missing_sections = [section for section in required_sections if section not in self.config]
        if missing_sections:
            raise ValueError(f"Missing required sections in configuration: {', '.join(missing_sections)}")

        self.input_files = {
            key: value for key, value in self.config['input'].items()
            if key != 'columns'
        }
        if 'de_results_file' not in self.input_files:
            raise ValueError("Missing required input files in configuration: de_results_file")

        self.columns = dict(DEFAULT_COLUMNS)
        self.columns.update(self.config['input'].get('columns', {}))

        self.output_config = self.config.get('output', {})
        self.analysis_params = self.config.get('analysis', {})

        # Significance thresholds shared by the over-representation tests
        self.fdr_threshold = float(self.analysis_params.get('fdr_threshold', 0.01))
        lfc = self.analysis_params.get('lfc_threshold')
        self.lfc_threshold = float(lfc) if lfc is not None else None

        self.gsea_params = self.config.get('gsea', {})
        self.goseq_params = self.config.get('goseq', {})
        self.kegg_params = self.config.get('kegg', {})

        unknown = [name for name in self.analysis_params.get('run', []) if name not in ANALYSES]
        if unknown:
            raise ValueError(f"Unknown analyses requested: {', '.join(unknown)}")

    @property
    def analyses(self) -> List[str]:
        """Analyses to run, in pipeline order."""
        requested = self.analysis_params.get('run', list(ANALYSES))
        return [name for name in ANALYSES if name in requested]

    def get_input_path(self, key: str) -> Optional[Path]:
        """Get an input file path, or None when the key is not configured."""
        value = self.input_files.get(key)
        return Path(value) if value is not None else None

    def get_output_path(self, subdir: Optional[str] = None) -> Path:
        """Get the path to the output directory or a subdirectory within it.

        Args:
            subdir: Optional subdirectory name within the output directory

        Returns:
            Path object for the requested directory
        """
        output_dir = self.output_config.get("output_dir", self.output_config.get("directory", "results"))
        base_path = Path(output_dir)

        if subdir:
            return base_path / subdir

        return base_path

    def to_dict(self) -> Dict[str, Any]:
        """Return the effective configuration including resolved defaults."""
        return {
            'input': dict(self.input_files, columns=self.columns),
            'output': self.output_config,
            'analysis': dict(self.analysis_params, run=self.analyses),
            'gsea': self.gsea_params,
            'goseq': self.goseq_params,
            'kegg': self.kegg_params,
        }

    def save_config(self, output_path: Union[str, Path]) -> None:
        """Save the configuration to a TOML file.

        Args:
            output_path: Path to save the configuration file
        """
        with open(output_path, "wb") as f:
            tomli_w.dump(self.config, f)
