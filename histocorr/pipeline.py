import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd

from histocorr.config import resolve_config
from histocorr.core.aggregation import aggregate_spot_pixels
from histocorr.core.correlation import correlate
from histocorr.core.data_loader import lowres_image_from_anndata, spot_positions_from_anndata
from histocorr.core.exceptions import ColumnFailure, MalformedInput
from histocorr.core.features import (channels_from_rgb, extract_spot_features,
                                     extract_spot_pixels, scale_coordinates)
from histocorr.core.outliers import filter_expression_matrix, filter_feature_table
from histocorr.core.ranking import rank_correlations
from histocorr.utils.logging import log_execution_time

logger = logging.getLogger('histocorr.pipeline')

@dataclass
class PipelineResult:
    """Everything produced by one run of the correlation pipeline"""

    correlations: pd.DataFrame
    table: pd.DataFrame
    filtered_expression: pd.DataFrame
    filtered_features: pd.DataFrame
    failures: List[ColumnFailure] = field(default_factory=list)

def _check_table(table, label):
    if not isinstance(table, pd.DataFrame):
        raise MalformedInput(f"{label} must be a pandas DataFrame, got {type(table).__name__}")
    if table.empty:
        raise MalformedInput(f"{label} is empty")
    if not table.index.is_unique:
        raise MalformedInput(f"{label} has duplicate barcodes")
    if not table.columns.is_unique:
        raise MalformedInput(f"{label} has duplicate column names")
    non_numeric = [col for col in table.columns if not pd.api.types.is_numeric_dtype(table[col])]
    if non_numeric:
        raise MalformedInput(f"{label} has non-numeric columns: {non_numeric[:5]}")

def validate_inputs(expression, features):
    """
    Check the expression matrix and feature table and align their barcodes

    Parameters
    ----------
    expression : pandas.DataFrame
        Spots x genes matrix of non-negative log-counts
    features : pandas.DataFrame
        Spots x pixel-feature table

    Returns
    -------
    expression, features : pandas.DataFrame
        Both tables restricted to the shared barcodes, in feature-table order

    Raises
    ------
    MalformedInput
        If either table is malformed or the barcode sets are disjoint
    """
    _check_table(expression, "Expression matrix")
    _check_table(features, "Feature table")
    if (expression.to_numpy(dtype=float) < 0).any():
        raise MalformedInput("Expression matrix contains negative values")

    shared = features.index[features.index.isin(expression.index)]
    if len(shared) == 0:
        raise MalformedInput("Expression matrix and feature table share no barcodes")

    n_dropped_expr = len(expression) - len(shared)
    n_dropped_feat = len(features) - len(shared)
    if n_dropped_expr or n_dropped_feat:
        logger.warning(f"Dropping {n_dropped_expr} expression spots and {n_dropped_feat} "
                       f"feature spots without a counterpart; {len(shared)} spots remain")

    return expression.loc[shared], features.loc[shared]

def build_feature_table(image, positions, scale_factor, config=None, spot_diameter_fullres=None):
    """
    Turn an RGB image and spot positions into a per-spot feature table

    Parameters
    ----------
    image : numpy.ndarray
        RGB image the scale factor refers to
    positions : pandas.DataFrame
        Spot table indexed by barcode with 'pxl_row_in_fullres' and
        'pxl_col_in_fullres'
    scale_factor : float
        Full-resolution to image scale factor
    config : dict, optional
        Pipeline configuration; only the 'features' section is used
    spot_diameter_fullres : float, optional
        Spot diameter in full-resolution pixels, used to derive the
        aggregation radius when ``features.radius`` is not set

    Returns
    -------
    pandas.DataFrame
        Feature table indexed by barcode
    """
    cfg = resolve_config(config)['features']
    channels = channels_from_rgb(image, channels=cfg['channels'])
    coords = scale_coordinates(positions, scale_factor)

    if not cfg['aggregate']:
        return extract_spot_features(channels, coords, on_out_of_bounds=cfg['on_out_of_bounds'])

    radius = cfg['radius']
    if radius is None:
        if spot_diameter_fullres is None:
            raise ValueError("Aggregation needs features.radius or spot_diameter_fullres")
        radius = spot_diameter_fullres * scale_factor / 2
    samples = extract_spot_pixels(channels, coords, radius, on_out_of_bounds=cfg['on_out_of_bounds'])
    table = aggregate_spot_pixels(samples, channels=list(channels), statistics=cfg['statistics'])
    table.index.name = None
    # spots dropped as out of bounds keep a row of missing values
    return table.reindex(coords.index)

def features_from_anndata(adata, config=None, library_id=None, image_key='lowres'):
    """Build the feature table from the image and coordinates stored by the Visium reader"""
    cfg = resolve_config(config)['features']
    image, scale_factor = lowres_image_from_anndata(adata, library_id=library_id, image_key=image_key,
                                                    scale_factor_key=cfg['scale_factor_key'])
    if library_id is None:
        library_id = next(iter(adata.uns['spatial']))
    diameter = adata.uns['spatial'][library_id].get('scalefactors', {}).get('spot_diameter_fullres')
    positions = spot_positions_from_anndata(adata)
    return build_feature_table(image, positions, scale_factor, config=config,
                               spot_diameter_fullres=diameter)

def run_correlation_pipeline(expression, features, lookup, config=None):
    """
    Correlate gene expression with pixel features and rank the genes

    Structural problems with the inputs raise before any parallel work
    starts. Column-local problems (a gene with too little data left after
    outlier filtering, an undefined coefficient) are collected in
    ``PipelineResult.failures`` and the run continues.

    Parameters
    ----------
    expression : pandas.DataFrame
        Spots x genes log-count matrix, columns are gene identifiers
    features : pandas.DataFrame
        Spots x pixel-feature table
    lookup : GeneLookup
        Gene identifier to name lookup used to label the ranked table
    config : dict, optional
        Overrides for :func:`histocorr.config.get_parameter_defaults`

    Returns
    -------
    PipelineResult
    """
    cfg = resolve_config(config)
    log_end = log_execution_time(logger)
    try:
        expression, features = validate_inputs(expression, features)
    except MalformedInput as e:
        logger.error(f"Invalid pipeline input: {str(e)}")
        raise

    logger.info(f"Running correlation pipeline on {expression.shape[0]} spots, "
                f"{expression.shape[1]} genes and {features.shape[1]} features")

    parallel = cfg['parallel']
    outliers = cfg['outliers']
    failures = []

    filtered_expression, expr_failures = filter_expression_matrix(
        expression, nmads=outliers['nmads'], min_observations=outliers['min_observations'],
        invert_zero_median=outliers['invert_zero_median'], **parallel)
    failures.extend(expr_failures)

    filtered_features = features.astype(float)
    if outliers['filter_features']:
        filtered_features, feat_failures = filter_feature_table(
            features, nmads=outliers['nmads'], min_observations=outliers['min_observations'],
            **parallel)
        failures.extend(feat_failures)

    result = correlate(filtered_expression, filtered_features,
                       decimals=cfg['correlation']['decimals'],
                       min_periods=cfg['correlation']['min_periods'], **parallel)
    failures.extend(result.failures)

    ranking = cfg['ranking']
    table = rank_correlations(result.matrix, lookup, mode=ranking['mode'],
                              threshold=ranking['threshold'], k=ranking['k'],
                              mask_below=ranking['mask_below'])

    n_undefined = int(np.isnan(result.matrix.to_numpy()).sum())
    logger.info(f"Selected {len(table)} of {len(result.matrix)} genes; "
                f"{n_undefined} undefined coefficients, {len(failures)} failures recorded")
    log_end("Correlation pipeline completed")

    return PipelineResult(correlations=result.matrix, table=table,
                          filtered_expression=filtered_expression,
                          filtered_features=filtered_features, failures=failures)
