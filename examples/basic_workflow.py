"""
Basic Histology/Expression Correlation Workflow

Correlates low-resolution image channel values with per-spot gene
expression for one Visium sample and ranks the genes that track the
histology most closely.
"""

import scanpy as sc
import logging
import sys
from pathlib import Path

from histocorr.config import read_config
from histocorr.utils.logging import setup_logging
from histocorr.core.data_loader import load_data, expression_from_anndata
from histocorr.core.genes import GeneLookup
from histocorr.pipeline import features_from_anndata, run_correlation_pipeline
from histocorr.utils.io import save_results

def main(visium_dir, config_path=None):
    # Set up logging
    output_dir = Path("histocorr_output")
    output_dir.mkdir(exist_ok=True)
    logger = setup_logging(level="INFO", log_file=output_dir / "histocorr_basic_workflow.log")
    logger.info("Starting basic histology/expression correlation workflow")

    config = read_config(config_path) if config_path else None

    # Step 1: Load data
    logger.info("Step 1: Loading data")
    adata = load_data(visium_dir, format="10x_visium")

    # Step 2: Log-normalise counts
    logger.info("Step 2: Normalising expression")
    sc.pp.filter_genes(adata, min_cells=3)
    sc.pp.normalize_total(adata, target_sum=1e4)
    sc.pp.log1p(adata)

    # Step 3: Pixel features at each spot
    logger.info("Step 3: Extracting pixel features")
    features = features_from_anndata(adata, config=config)

    # Step 4: Correlate and rank
    logger.info("Step 4: Correlating expression with pixel features")
    expression = expression_from_anndata(adata, gene_key="gene_ids")
    lookup = GeneLookup.from_anndata(adata)
    result = run_correlation_pipeline(expression, features, lookup, config=config)

    for failure in result.failures[:10]:
        logger.info(f"  {failure.kind}: {failure.message}")

    # Step 5: Save results
    logger.info("Step 5: Saving results")
    paths = save_results(result, output_dir / "data", save_formats=['csv'])

    logger.info(f"Selected {len(result.table)} genes. Results saved to {paths['csv']}")

if __name__ == "__main__":
    if len(sys.argv) < 2:
        logging.basicConfig()
        logging.getLogger('histocorr').error("Usage: basic_workflow.py VISIUM_OUTS_DIR [CONFIG]")
        sys.exit(1)
    main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None)
