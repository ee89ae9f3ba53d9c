import logging
import numbers
from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd

from histocorr.core.exceptions import ColumnFailure, InsufficientData, MalformedInput
from histocorr.utils.parallel import parallelize_over_columns

logger = logging.getLogger('histocorr.core.correlation')

@dataclass
class CorrelationResult:
    """Gene x feature correlation matrix plus the cells that could not be computed"""

    matrix: pd.DataFrame
    failures: List[ColumnFailure] = field(default_factory=list)

def _check_decimals(decimals):
    if not isinstance(decimals, numbers.Integral) or decimals < 0:
        raise ValueError(f"decimals must be a non-negative integer, got {decimals}")

def correlate_column(values, features, decimals=3, min_periods=2):
    """
    Correlate one gene against every feature column

    Each coefficient is a Pearson correlation over the spots where both the
    gene and the feature are present (pairwise deletion).

    Parameters
    ----------
    values : pandas.Series
        Expression of one gene, indexed by barcode
    features : pandas.DataFrame
        Feature table with the same barcode index
    decimals : int, optional
        Number of decimal digits to round to
    min_periods : int, optional
        Minimum number of complete pairs for a coefficient

    Returns
    -------
    row : numpy.ndarray
        One coefficient per feature column, NaN where undefined
    failures : list of ColumnFailure
        InsufficientData records for the undefined cells
    """
    _check_decimals(decimals)
    min_periods = max(int(min_periods), 2)
    row = np.full(features.shape[1], np.nan)
    failures = []
    present = values.notna()
    for position, feature in enumerate(features.columns):
        other = features.iloc[:, position]
        n_complete = int((present & other.notna()).sum())
        if n_complete < min_periods:
            exc = InsufficientData(values.name, n_complete, min_periods, feature=feature)
            failures.append(ColumnFailure.from_exception(values.name, exc))
            continue
        coefficient = values.corr(other, method='pearson', min_periods=min_periods)
        if np.isnan(coefficient):
            # zero variance on the complete pairs
            exc = InsufficientData(values.name, n_complete, min_periods, feature=feature)
            failures.append(ColumnFailure(column=values.name, kind=type(exc).__name__,
                                          message=f"{exc} (constant values)", feature=feature))
            continue
        row[position] = np.round(np.clip(coefficient, -1.0, 1.0), decimals)
    return row, failures

def check_alignment(expression, features):
    """Raise MalformedInput unless both tables share barcodes in the same order"""
    if not expression.index.is_unique or not features.index.is_unique:
        raise MalformedInput("Barcodes must be unique in both the expression matrix and the feature table")
    shared = expression.index.intersection(features.index)
    if len(shared) == 0:
        raise MalformedInput("Expression matrix and feature table share no barcodes")
    if not expression.index.equals(features.index):
        raise MalformedInput("Expression matrix and feature table are not aligned on barcodes; "
                             "use histocorr.pipeline.validate_inputs to align them")

def correlate(expression, features, decimals=3, min_periods=2, n_jobs=-1,
              backend='threads', show_progress=False):
    """
    Correlate every gene with every pixel feature

    One task per gene runs on the worker pool. Each task's row is written
    into a preallocated matrix at the gene's column position, so the result
    does not depend on the number of workers or the order they finish in.

    Parameters
    ----------
    expression : pandas.DataFrame
        Spots x genes matrix, possibly with NaN from the outlier filter
    features : pandas.DataFrame
        Spots x features table, aligned to ``expression``
    decimals : int, optional
        Number of decimal digits to round to
    min_periods : int, optional
        Minimum number of complete pairs for a coefficient (at least 2)
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'threads', 'processes', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar

    Returns
    -------
    CorrelationResult
        Matrix indexed by gene (``gene_id``) with one column per feature
    """
    _check_decimals(decimals)
    check_alignment(expression, features)

    logger.info(f"Correlating {expression.shape[1]} genes with {features.shape[1]} features "
                f"over {expression.shape[0]} spots")

    features = features.astype(float)
    results, failures = parallelize_over_columns(
        correlate_column, expression.astype(float), n_jobs=n_jobs, backend=backend,
        show_progress=show_progress, desc="Correlating genes",
        features=features, decimals=decimals, min_periods=min_periods)

    values = np.full((expression.shape[1], features.shape[1]), np.nan)
    for position, outcome in enumerate(results):
        if outcome is None:
            continue
        row, cell_failures = outcome
        values[position] = row
        failures.extend(cell_failures)

    matrix = pd.DataFrame(values, index=pd.Index(expression.columns, name='gene_id'),
                          columns=features.columns.copy())

    logger.info(f"Computed {int(matrix.notna().sum().sum())} of {matrix.size} coefficients "
                f"({len(failures)} undefined)")

    return CorrelationResult(matrix=matrix, failures=failures)
