import logging
import numbers
import pandas as pd

logger = logging.getLogger('histocorr.core.ranking')

RANKING_MODES = ('threshold', 'top_k')

def filter_by_threshold(matrix, threshold, mask_below=False):
    """
    Keep genes with at least one strong correlation

    Parameters
    ----------
    matrix : pandas.DataFrame
        Gene x feature correlation matrix
    threshold : float
        Rows are kept when ``|r| >= threshold`` for at least one feature
    mask_below : bool, optional
        Also set the cells below the threshold to NaN in the result

    Returns
    -------
    pandas.DataFrame
        Subset of ``matrix`` rows in original order; rows that are entirely
        missing are dropped
    """
    if threshold < 0:
        raise ValueError(f"Threshold must be non-negative, got {threshold}")
    strong = matrix.abs() >= threshold
    keep = strong.any(axis=1)
    selected = matrix.loc[keep]
    if mask_below:
        selected = selected.where(strong.loc[keep])
    selected = selected.dropna(how='all')

    logger.info(f"Threshold {threshold} kept {len(selected)} of {len(matrix)} genes")

    return selected

def select_top_k(matrix, k):
    """
    Union of the ``k`` strongest genes per feature

    For each feature the ``k`` rows with the largest ``|r|`` are picked,
    ties going to the earlier row. Missing cells are never picked. The
    returned table is the union of those rows in original order, so it
    may hold more than ``k`` rows.
    """
    if not isinstance(k, numbers.Integral) or k < 1:
        raise ValueError(f"k must be a positive integer, got {k}")
    positions = pd.RangeIndex(len(matrix))
    chosen = set()
    for feature in matrix.columns:
        strength = pd.Series(matrix[feature].abs().to_numpy(), index=positions).dropna()
        chosen.update(strength.nlargest(k, keep='first').index)
    selected = matrix.iloc[sorted(chosen)]

    logger.info(f"Top {k} per feature selected {len(selected)} of {len(matrix)} genes")

    return selected

def rename_genes(table, lookup):
    """Return a copy of ``table`` indexed by gene name instead of identifier"""
    renamed = table.copy()
    renamed.index = pd.Index(lookup.names_for(table.index), name='gene_name')
    if not renamed.index.is_unique:
        logger.warning("Several gene identifiers share a name; the renamed table has duplicate labels")
    return renamed

def rank_correlations(matrix, lookup, mode='threshold', threshold=0.3, k=10, mask_below=False):
    """
    Select genes from a correlation matrix and label them by name

    Parameters
    ----------
    matrix : pandas.DataFrame
        Gene x feature correlation matrix indexed by gene identifier
    lookup : GeneLookup
        Identifier to name lookup
    mode : str, optional
        'threshold' or 'top_k'
    threshold : float, optional
        Cut-off for threshold mode
    k : int, optional
        Genes per feature for top-k mode
    mask_below : bool, optional
        In threshold mode, blank out the sub-threshold cells

    Returns
    -------
    pandas.DataFrame
        Selected rows indexed by gene name
    """
    if mode == 'threshold':
        selected = filter_by_threshold(matrix, threshold, mask_below=mask_below)
    elif mode == 'top_k':
        selected = select_top_k(matrix, k)
    else:
        raise ValueError(f"Unsupported ranking mode: {mode}")

    return rename_genes(selected, lookup)
