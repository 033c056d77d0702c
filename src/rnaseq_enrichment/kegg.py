"""
KEGG pathway over-representation analysis and pathway diagrams.

Gene sets are fetched from the KEGG REST service (https://rest.kegg.jp) and
cached on disk. Gene identifiers are KEGG gene IDs without the organism
prefix, which are Entrez Gene IDs for the common model organisms.
"""

import io
import logging
import re
import time
import webbrowser
import xml.etree.ElementTree as ET
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import matplotlib.image as mpimg
import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import requests
from matplotlib.colors import LinearSegmentedColormap, Normalize
from matplotlib.patches import Rectangle

from rnaseq_enrichment.stats import adjust_pvalues, hypergeometric_pvalues
from rnaseq_enrichment.utils import ensure_dir

KEGG_REST_URL = "https://rest.kegg.jp"
KEGG_SHOW_PATHWAY_URL = "https://www.kegg.jp/kegg-bin/show_pathway"

_ORGANISM_RE = re.compile(r'^[a-z]{3,4}$')

KEGG_SCHEMA = {
    'pathway_id': pl.Utf8,
    'description': pl.Utf8,
    'gene_ratio': pl.Utf8,
    'bg_ratio': pl.Utf8,
    'p_value': pl.Float64,
    'padj': pl.Float64,
    'gene_ids': pl.Utf8,
    'count': pl.Int64,
}

# Low fold changes green, high red, as on KEGG's own colouring
PATHVIEW_CMAP = LinearSegmentedColormap.from_list('pathview', ['#00b000', '#bebebe', '#ff0000'])


def _check_organism(organism: str) -> str:
    if not _ORGANISM_RE.match(organism or ''):
        raise ValueError(f"Invalid KEGG organism code: {organism!r}")
    return organism


def _strip_prefix(identifier: str) -> str:
    return identifier.split(':', 1)[1] if ':' in identifier else identifier


class KEGGClient:
    """Minimal KEGG REST client with a file cache."""

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        timeout: float = 30.0,
        max_age_days: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            cache_dir: Directory for cached responses, no caching if None
            timeout: Request timeout in seconds
            max_age_days: Cached responses older than this are fetched again
            session: Optional requests session
        """
        self.cache_dir = ensure_dir(Path(cache_dir)) if cache_dir is not None else None
        self.timeout = timeout
        self.max_age_days = max_age_days
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def _cache_file(self, path: str, binary: bool) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        name = re.sub(r'[^A-Za-z0-9_.-]', '_', path.strip('/'))
        return self.cache_dir / (name + ('.bin' if binary else '.txt'))

    def _is_fresh(self, cache_file: Path) -> bool:
        if not cache_file.exists():
            return False
        age_days = (time.time() - cache_file.stat().st_mtime) / 86400
        return age_days <= self.max_age_days

    def fetch(self, path: str, binary: bool = False) -> Union[str, bytes]:
        """
        GET a KEGG REST resource, using the cache when fresh.

        Args:
            path: Resource path, e.g. 'list/pathway/mmu'
            binary: Return bytes instead of text

        Returns:
            Response body
        """
        cache_file = self._cache_file(path, binary)
        if cache_file is not None and self._is_fresh(cache_file):
            self.logger.debug(f"Using cached KEGG response {cache_file.name}")
            return cache_file.read_bytes() if binary else cache_file.read_text()

        url = f"{KEGG_REST_URL}/{path.lstrip('/')}"
        self.logger.info(f"Querying KEGG: {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise RuntimeError(f"KEGG request failed for {url}: {e}") from e

        body = response.content if binary else response.text
        if not body:
            raise RuntimeError(f"KEGG returned an empty response for {url}")

        if cache_file is not None:
            if binary:
                cache_file.write_bytes(body)
            else:
                cache_file.write_text(body)
        return body

    def pathway_names(self, organism: str) -> Dict[str, str]:
        """Pathway ID -> description, without the trailing organism name."""
        text = self.fetch(f"list/pathway/{_check_organism(organism)}")
        names = {}
        for line in text.strip().splitlines():
            if '\t' not in line:
                continue
            pathway_id, description = line.split('\t', 1)
            description = description.rsplit(' - ', 1)[0] if ' - ' in description else description
            names[_strip_prefix(pathway_id)] = description.strip()
        return names

    def pathway_genes(self, organism: str) -> Dict[str, List[str]]:
        """Pathway ID -> member gene IDs (organism prefix removed)."""
        text = self.fetch(f"link/pathway/{_check_organism(organism)}")
        members = defaultdict(set)
        for line in text.strip().splitlines():
            parts = line.split('\t')
            if len(parts) != 2:
                continue
            gene, pathway = parts
            members[_strip_prefix(pathway)].add(_strip_prefix(gene))
        return {pathway: sorted(genes) for pathway, genes in members.items()}

    def kgml(self, pathway_id: str) -> str:
        """KGML document of a pathway."""
        return self.fetch(f"get/{pathway_id}/kgml")

    def image(self, pathway_id: str) -> bytes:
        """PNG diagram of a pathway."""
        return self.fetch(f"get/{pathway_id}/image", binary=True)


def enrich_kegg(
    genes: Iterable[str],
    organism: str = 'mmu',
    client: Optional[KEGGClient] = None,
    p_cutoff: float = 0.05,
    padj_cutoff: Optional[float] = None,
    min_size: int = 10,
    max_size: int = 500,
    universe: Optional[Iterable[str]] = None
) -> pl.DataFrame:
    """
    Over-representation of genes in KEGG pathways.

    Args:
        genes: Significant gene IDs (Entrez for most organisms)
        organism: KEGG organism code, e.g. 'mmu' or 'hsa'
        client: KEGG client, a non-caching one is created if None
        p_cutoff: Keep pathways with p-value below this
        padj_cutoff: Keep pathways with adjusted p-value below this (defaults to p_cutoff)
        min_size: Minimum annotated pathway size
        max_size: Maximum annotated pathway size
        universe: Background genes, defaults to every gene in a KEGG pathway

    Returns:
        DataFrame with pathway_id, description, gene_ratio, bg_ratio, p_value,
        padj, gene_ids and count columns, sorted by p_value
    """
    client = client or KEGGClient()
    padj_cutoff = p_cutoff if padj_cutoff is None else padj_cutoff

    pathway_genes = client.pathway_genes(organism)
    names = client.pathway_names(organism)

    annotated = set().union(*pathway_genes.values()) if pathway_genes else set()
    background = annotated & {str(g) for g in universe} if universe is not None else annotated

    sets = {}
    for pathway_id, members in pathway_genes.items():
        in_background = [g for g in members if g in background]
        if min_size <= len(in_background) <= max_size:
            sets[pathway_id] = in_background

    query = sorted({str(g) for g in genes} & background)
    n_query, n_background = len(query), len(background)
    logging.info(f"Running KEGG enrichment: {n_query} of the input genes are annotated, "
                 f"{len(sets)} pathways, background={n_background}")

    if not query:
        logging.warning("No input genes are annotated in KEGG pathways")
        return pl.DataFrame(schema=KEGG_SCHEMA)

    query_set = set(query)
    rows = []
    for pathway_id, members in sets.items():
        hits = [g for g in members if g in query_set]
        if not hits:
            continue
        pvals = hypergeometric_pvalues(len(hits), n_background, len(members), n_query)
        rows.append({
            'pathway_id': pathway_id,
            'description': names.get(pathway_id, pathway_id),
            'gene_ratio': f"{len(hits)}/{n_query}",
            'bg_ratio': f"{len(members)}/{n_background}",
            'p_value': pvals['over'],
            'gene_ids': '/'.join(hits),
            'count': len(hits),
        })

    padj = adjust_pvalues([row['p_value'] for row in rows])
    for row, adjusted in zip(rows, padj):
        row['padj'] = adjusted

    results = pl.DataFrame(rows, schema=KEGG_SCHEMA)
    results = results.filter((pl.col('p_value') < p_cutoff) & (pl.col('padj') < padj_cutoff))
    results = results.sort(['p_value', 'pathway_id'])

    logging.info(f"KEGG enrichment complete: {results.height}/{len(rows)} pathways significant")
    return results


def kgml_gene_nodes(kgml: str) -> List[Dict]:
    """
    Gene boxes of a KGML document.

    Returns:
        List of dictionaries with id, genes, label, x, y, width and height.
        Coordinates are box centres in image pixels.
    """
    root = ET.fromstring(kgml)
    nodes = []
    for entry in root.findall('entry'):
        if entry.get('type') != 'gene':
            continue
        graphics = entry.find('graphics')
        if graphics is None or graphics.get('type', 'rectangle') != 'rectangle':
            continue
        nodes.append({
            'id': entry.get('id'),
            'genes': [_strip_prefix(g) for g in entry.get('name', '').split()],
            'label': graphics.get('name', '').split(',')[0].rstrip('.'),
            'x': float(graphics.get('x', 0)),
            'y': float(graphics.get('y', 0)),
            'width': float(graphics.get('width', 46)),
            'height': float(graphics.get('height', 17)),
        })
    return nodes


def node_values(
    nodes: List[Dict],
    fold_changes: Dict[str, float],
    node_sum: str = 'sum'
) -> List[Optional[float]]:
    """
    Summarise the fold changes of the genes behind each node.

    Args:
        nodes: Output of kgml_gene_nodes
        fold_changes: Gene ID -> log fold change
        node_sum: 'sum', 'mean' or 'max_abs'

    Returns:
        One value per node, None where no gene has data
    """
    if node_sum not in ('sum', 'mean', 'max_abs'):
        raise ValueError(f"Unknown node_sum: {node_sum}")

    values = []
    for node in nodes:
        data = [fold_changes[g] for g in node['genes'] if g in fold_changes and np.isfinite(fold_changes[g])]
        if not data:
            values.append(None)
        elif node_sum == 'sum':
            values.append(float(np.sum(data)))
        elif node_sum == 'mean':
            values.append(float(np.mean(data)))
        else:
            values.append(float(data[int(np.argmax(np.abs(data)))]))
    return values


def pathview(
    fold_changes: Dict[str, float],
    pathway_id: str,
    client: Optional[KEGGClient] = None,
    out_dir: Union[str, Path] = '.',
    limit: float = 2.0,
    node_sum: str = 'sum',
    suffix: str = 'pathview',
    dpi: int = 100
) -> Path:
    """
    Render a KEGG pathway diagram with gene boxes coloured by fold change.

    Args:
        fold_changes: Gene ID -> log fold change
        pathway_id: KEGG pathway ID, e.g. 'mmu04612'
        client: KEGG client, a non-caching one is created if None
        out_dir: Directory for the output image
        limit: Fold changes are clipped to [-limit, limit] for colouring
        node_sum: How to combine several genes mapped to one box
        suffix: Output file name suffix
        dpi: Output resolution

    Returns:
        Path to the written '<pathway_id>.<suffix>.png'
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    client = client or KEGGClient()

    nodes = kgml_gene_nodes(client.kgml(pathway_id))
    values = node_values(nodes, fold_changes, node_sum=node_sum)
    image = mpimg.imread(io.BytesIO(client.image(pathway_id)), format='png')

    height, width = image.shape[:2]
    fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.imshow(image)
    ax.set_axis_off()

    norm = Normalize(vmin=-limit, vmax=limit, clip=True)
    coloured = 0
    for node, value in zip(nodes, values):
        if value is None:
            continue
        coloured += 1
        ax.add_patch(Rectangle(
            (node['x'] - node['width'] / 2, node['y'] - node['height'] / 2),
            node['width'], node['height'],
            facecolor=PATHVIEW_CMAP(norm(value)),
            edgecolor='black',
            linewidth=0.5
        ))
        ax.text(node['x'], node['y'], node['label'], ha='center', va='center', fontsize=6)

    mappable = plt.cm.ScalarMappable(norm=norm, cmap=PATHVIEW_CMAP)
    cax = fig.add_axes([0.85, 0.93, 0.12, 0.015])
    fig.colorbar(mappable, cax=cax, orientation='horizontal', label='log2 fold change')

    out_file = ensure_dir(Path(out_dir)) / f"{pathway_id}.{suffix}.png"
    fig.savefig(out_file, dpi=dpi)
    plt.close(fig)

    logging.info(f"Coloured {coloured}/{len(nodes)} gene boxes of {pathway_id}; saved {out_file}")
    return out_file


def browse_kegg(
    pathway_id: str,
    genes: Optional[Iterable[str]] = None,
    open_browser: bool = True
) -> str:
    """
    Open the KEGG web view of a pathway with genes highlighted.

    Args:
        pathway_id: KEGG pathway ID
        genes: Gene IDs to highlight
        open_browser: Open the page in the default browser

    Returns:
        The URL of the page
    """
    url = f"{KEGG_SHOW_PATHWAY_URL}?{pathway_id}"
    if genes:
        url += '/' + '/'.join(str(g) for g in genes)
    if open_browser:
        webbrowser.open(url)
    return url
