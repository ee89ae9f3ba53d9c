import logging
import numpy as np
import pandas as pd

logger = logging.getLogger('histocorr.core.aggregation')

def mode(values):
    """
    Most frequent value, ignoring NaN

    Ties are broken by the value that occurs first in ``values``, so
    ``mode([1, 1, 2, 2]) == 1`` and ``mode([2, 2, 1, 1]) == 2``.
    """
    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    if values.size == 0:
        return np.nan
    uniques, first_seen, counts = np.unique(values, return_index=True, return_counts=True)
    tied = np.flatnonzero(counts == counts.max())
    return float(uniques[tied[np.argmin(first_seen[tied])]])

STATISTICS = {
    'mean': lambda values: float(np.nanmean(values)) if np.any(~np.isnan(values)) else np.nan,
    'median': lambda values: float(np.nanmedian(values)) if np.any(~np.isnan(values)) else np.nan,
    'mode': mode,
}

def aggregate_spot_pixels(samples, channels=None, statistics=('mean', 'median', 'mode'),
                          spot_key='barcode'):
    """
    Reduce per-pixel samples to per-spot summary statistics

    Parameters
    ----------
    samples : pandas.DataFrame
        Long table with one row per pixel sample, e.g. from
        :func:`histocorr.core.features.extract_spot_pixels`
    channels : list of str, optional
        Channel columns to summarise. If None, every column except
        ``spot_key``, 'row' and 'col'
    statistics : list of str, optional
        Statistics to compute, from :data:`STATISTICS`
    spot_key : str, optional
        Column identifying the spot

    Returns
    -------
    pandas.DataFrame
        Feature table indexed by spot in order of first appearance, with
        columns ``{channel}_{statistic}`` laid out channel by channel
    """
    unknown = [stat for stat in statistics if stat not in STATISTICS]
    if unknown:
        raise ValueError(f"Unsupported statistics: {unknown}")
    if spot_key not in samples.columns:
        raise ValueError(f"Spot key {spot_key} not found in samples")
    if channels is None:
        channels = [col for col in samples.columns if col not in (spot_key, 'row', 'col')]

    layout = {f"{channel}_{stat}": (channel, stat) for channel in channels for stat in statistics}

    grouped = samples.groupby(spot_key, sort=False)
    spots = pd.unique(samples[spot_key])
    table = pd.DataFrame(np.nan, index=pd.Index(spots, name=spot_key), columns=list(layout))
    for spot, group in grouped:
        for column, (channel, stat) in layout.items():
            table.at[spot, column] = STATISTICS[stat](group[channel].to_numpy(dtype=float))

    logger.info(f"Aggregated {len(samples)} pixel samples into {len(table)} spots "
                f"({len(channels)} channels x {len(statistics)} statistics)")

    return table
