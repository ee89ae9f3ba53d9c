import logging
import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation

from histocorr.core.exceptions import InsufficientData
from histocorr.utils.parallel import parallelize_over_columns

logger = logging.getLogger('histocorr.core.outliers')

def detect_outliers(values, nmads=3.0):
    """
    Flag values far from the median in median-absolute-deviation units

    An entry is an outlier when ``|x - median| > nmads * MAD``, where MAD is
    scaled to be consistent with the standard deviation of a normal
    distribution (factor 1.4826). Missing entries are never outliers. When
    MAD is zero every value that differs from the median is an outlier.

    Parameters
    ----------
    values : pandas.Series
        Numeric column
    nmads : float, optional
        Number of MADs beyond which a value counts as an outlier

    Returns
    -------
    pandas.Series
        Boolean mask aligned to ``values``
    """
    if nmads <= 0:
        raise ValueError(f"nmads must be positive, got {nmads}")
    values = pd.Series(values, dtype=float)
    present = values.dropna()
    if present.empty:
        return pd.Series(False, index=values.index, name=values.name)
    center = present.median()
    spread = median_abs_deviation(present.to_numpy(), scale='normal')
    deviation = (values - center).abs()
    return (deviation > nmads * spread).fillna(False).astype(bool)

def mask_outliers(values, nmads=3.0, invert_zero_median=True):
    """
    Replace outliers (or, for zero-median columns, non-outliers) with NaN

    For a column whose median is exactly zero most spots carry no signal,
    so with ``invert_zero_median`` only the extreme values are kept and
    everything else is masked. Otherwise the extreme values are masked.
    Returns a new Series; rows are never removed.
    """
    values = pd.Series(values, dtype=float)
    outliers = detect_outliers(values, nmads=nmads)
    if invert_zero_median and values.median() == 0:
        return values.where(outliers)
    return values.mask(outliers)

def filter_column(values, nmads=3.0, min_observations=100, invert_zero_median=True):
    """
    Mask outliers and discard the column if too little data remains

    Parameters
    ----------
    values : pandas.Series
        One gene (or feature) across all spots
    nmads : float, optional
        Outlier cut-off in MADs
    min_observations : int, optional
        Minimum number of non-missing entries to keep the column
    invert_zero_median : bool, optional
        Keep only the outliers when the column median is zero

    Returns
    -------
    pandas.Series
        Filtered column; all NaN when fewer than ``min_observations``
        entries survive
    """
    values = pd.Series(values, dtype=float)
    try:
        return _filter_task(values, nmads=nmads, min_observations=min_observations,
                            invert_zero_median=invert_zero_median)
    except InsufficientData:
        return pd.Series(np.nan, index=values.index, name=values.name)

def _filter_task(values, nmads=3.0, min_observations=100, invert_zero_median=True):
    filtered = mask_outliers(values, nmads=nmads, invert_zero_median=invert_zero_median)
    n_observations = int(filtered.count())
    if n_observations < min_observations:
        raise InsufficientData(filtered.name, n_observations, min_observations)
    return filtered

def _filter_frame(frame, nmads, min_observations, invert_zero_median,
                  n_jobs, backend, show_progress, desc):
    if min_observations < 0:
        raise ValueError(f"min_observations must be non-negative, got {min_observations}")
    results, failures = parallelize_over_columns(
        _filter_task, frame, n_jobs=n_jobs, backend=backend,
        show_progress=show_progress, desc=desc,
        nmads=nmads, min_observations=min_observations,
        invert_zero_median=invert_zero_median)

    values = np.full(frame.shape, np.nan)
    for position, column in enumerate(results):
        if column is not None:
            values[:, position] = column.to_numpy()
    filtered = pd.DataFrame(values, index=frame.index.copy(), columns=frame.columns.copy())

    n_masked = int(filtered.isna().sum().sum() - frame.isna().sum().sum())
    logger.info(f"Outlier filter masked {n_masked} entries and discarded "
                f"{len(failures)} of {frame.shape[1]} columns")

    return filtered, failures

def filter_expression_matrix(expression, nmads=3.0, min_observations=100,
                             invert_zero_median=True, n_jobs=-1, backend='threads',
                             show_progress=False):
    """
    Apply the outlier filter to every gene column independently

    Parameters
    ----------
    expression : pandas.DataFrame
        Spots x genes log-count matrix
    nmads : float, optional
        Outlier cut-off in MADs
    min_observations : int, optional
        Minimum number of non-missing entries to keep a gene
    invert_zero_median : bool, optional
        Keep only the outliers for genes with zero median expression
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'threads', 'processes', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar

    Returns
    -------
    filtered : pandas.DataFrame
        Matrix of the same shape and order with masked entries set to NaN
    failures : list of ColumnFailure
        One InsufficientData record per discarded gene
    """
    logger.info(f"Filtering outliers in {expression.shape[1]} genes across {expression.shape[0]} spots")
    return _filter_frame(expression, nmads, min_observations, invert_zero_median,
                         n_jobs, backend, show_progress, "Filtering genes")

def filter_feature_table(features, nmads=3.0, min_observations=100,
                         invert_zero_median=False, n_jobs=-1, backend='threads',
                         show_progress=False):
    """Apply the outlier filter to every pixel-feature column independently"""
    logger.info(f"Filtering outliers in {features.shape[1]} features across {features.shape[0]} spots")
    return _filter_frame(features, nmads, min_observations, invert_zero_median,
                         n_jobs, backend, show_progress, "Filtering features")
