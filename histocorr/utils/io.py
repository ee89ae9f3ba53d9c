import pandas as pd
import json
import logging
from pathlib import Path
import datetime
from dataclasses import asdict

logger = logging.getLogger('histocorr.utils.io')

VALID_FORMATS = ('csv', 'tsv', 'json')

FAILURE_COLUMNS = ['column', 'kind', 'message', 'feature']

def failures_to_frame(failures):
    """Convert ColumnFailure records into a DataFrame"""
    return pd.DataFrame([asdict(failure) for failure in failures], columns=FAILURE_COLUMNS)

def _write_table(table, path, fmt):
    if fmt == 'csv':
        table.to_csv(path)
    elif fmt == 'tsv':
        table.to_csv(path, sep='\t')
    elif fmt == 'json':
        table.to_json(path, orient='split', indent=2)

def save_results(result, output_dir, save_formats=None):
    """
    Save pipeline results in various formats

    Parameters
    ----------
    result : PipelineResult
        Result of :func:`histocorr.pipeline.run_correlation_pipeline`
    output_dir : str or Path
        Directory to save results
    save_formats : list, optional
        List of formats to save. Options: 'csv', 'tsv', 'json'.
        If None, saves only in 'csv' format

    Returns
    -------
    dict
        Dictionary with paths to saved directories, keyed by format
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if save_formats is None:
        save_formats = ['csv']
    unsupported = [fmt for fmt in save_formats if fmt not in VALID_FORMATS]
    if unsupported:
        raise ValueError(f"Unsupported save formats: {unsupported}")

    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    tables = {
        'ranked_correlations': result.table,
        'correlation_matrix': result.correlations,
        'failures': failures_to_frame(result.failures),
    }
    saved_paths = {}
    for fmt in save_formats:
        fmt_dir = output_dir / f"histocorr_{fmt}_{timestamp}"
        fmt_dir.mkdir(exist_ok=True)
        try:
            for name, table in tables.items():
                _write_table(table, fmt_dir / f"{name}.{fmt}", fmt)
        except Exception as e:
            logger.error(f"Error saving in {fmt} format: {str(e)}")
            raise
        readme_path = fmt_dir / "README.txt"
        with open(readme_path, 'w') as f:
            f.write("histocorr Correlation Results\n")
            f.write(f"Generated on: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")
            f.write("Files:\n")
            f.write(f"- ranked_correlations.{fmt}: Selected genes (by name) x pixel features\n")
            f.write(f"- correlation_matrix.{fmt}: All genes (by identifier) x pixel features\n")
            f.write(f"- failures.{fmt}: Columns and cells that could not be computed\n")

        saved_paths[fmt] = fmt_dir
        logger.info(f"Saved {fmt.upper()} files to {fmt_dir}")

    manifest_path = output_dir / f"histocorr_manifest_{timestamp}.json"
    manifest = {
        'timestamp': timestamp,
        'formats': {fmt: str(path) for fmt, path in saved_paths.items()},
        'n_genes': int(result.correlations.shape[0]),
        'n_features': int(result.correlations.shape[1]),
        'n_selected': int(result.table.shape[0]),
        'n_failures': len(result.failures),
    }
    with open(manifest_path, 'w') as f:
        json.dump(manifest, f, indent=2)

    logger.info(f"Created manifest file at {manifest_path}")

    return saved_paths

def read_results(input_path, table='ranked_correlations'):
    """
    Read one saved table back from a results directory

    Parameters
    ----------
    input_path : str or Path
        Directory written by :func:`save_results`
    table : str, optional
        'ranked_correlations', 'correlation_matrix' or 'failures'

    Returns
    -------
    pandas.DataFrame
    """
    input_path = Path(input_path)
    if not input_path.is_dir():
        raise FileNotFoundError(f"Results directory not found: {input_path}")

    for fmt in VALID_FORMATS:
        path = input_path / f"{table}.{fmt}"
        if not path.exists():
            continue
        logger.info(f"Reading {table} in {fmt} format from {path}")
        if fmt == 'json':
            return pd.read_json(path, orient='split')
        return pd.read_csv(path, sep='\t' if fmt == 'tsv' else ',', index_col=0)

    raise FileNotFoundError(f"No saved {table} table in {input_path}")
