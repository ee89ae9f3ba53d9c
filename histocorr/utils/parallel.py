import logging
import pandas as pd
from typing import Callable, List, Any, Optional, Tuple, Type
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from functools import partial
from tqdm import tqdm

from histocorr.core.exceptions import ColumnFailure, InsufficientData

logger = logging.getLogger('histocorr.utils.parallel')

BACKENDS = ('threads', 'processes', 'serial')

def _resolve_n_jobs(n_jobs: Optional[int], n_items: int) -> int:
    if n_jobs is None or n_jobs <= 0:
        n_jobs = mp.cpu_count()
    return max(1, min(n_jobs, n_items))

def parallelize(func: Callable, items: List[Any], n_jobs: int = -1,
               backend: str = 'threads', show_progress: bool = False,
               desc: str = "Processing", **kwargs) -> List[Any]:
    """
    Run a function in parallel over a list of items

    Results are written back by item position, so the returned list
    follows the order of ``items`` whatever order the workers finish in.
    The first exception raised by a task cancels every task that has not
    started yet and is re-raised.

    Parameters
    ----------
    func : callable
        Function to apply to each item. Must be defined at module level
        when using the 'processes' backend
    items : list
        List of items to process
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'threads', 'processes', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar
    desc : str, optional
        Description for the progress bar
    **kwargs
        Additional arguments to pass to func

    Returns
    -------
    List[Any]
        Results of applying func to each item, in item order
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unsupported backend: {backend}")
    items = list(items)
    if not items:
        return []
    n_jobs = _resolve_n_jobs(n_jobs, len(items))

    logger.debug(f"Running {len(items)} tasks with {n_jobs} parallel jobs using {backend} backend")

    if backend == 'serial' or n_jobs == 1:
        iterator = tqdm(items, desc=desc) if show_progress else items
        return [func(item, **kwargs) for item in iterator]

    task = partial(func, **kwargs)
    executor_cls = ProcessPoolExecutor if backend == 'processes' else ThreadPoolExecutor
    results = [None] * len(items)
    with executor_cls(max_workers=n_jobs) as executor:
        futures = {executor.submit(task, item): idx for idx, item in enumerate(items)}
        progress = tqdm(total=len(items), desc=desc, disable=not show_progress)
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
                progress.update(1)
        except BaseException:
            cancelled = sum(future.cancel() for future in futures)
            logger.error(f"Task failed, cancelled {cancelled} pending tasks")
            raise
        finally:
            progress.close()

    return results

def _run_guarded(column: pd.Series, column_func: Callable = None,
                 recoverable: Tuple[Type[BaseException], ...] = (), **kwargs):
    try:
        return column_func(column, **kwargs), None
    except recoverable as e:
        return None, ColumnFailure.from_exception(column.name, e)

def parallelize_over_columns(func: Callable, frame: pd.DataFrame,
                             recoverable: Tuple[Type[BaseException], ...] = (InsufficientData,),
                             n_jobs: int = -1, backend: str = 'threads',
                             show_progress: bool = False, desc: str = "Processing columns",
                             **kwargs) -> Tuple[List[Any], List[ColumnFailure]]:
    """
    Apply a function to each column of a DataFrame in parallel

    Parameters
    ----------
    func : callable
        Function to apply to each column. Takes the column as a
        pandas.Series (named after the column) as first argument
    frame : pandas.DataFrame
        DataFrame whose columns are processed independently
    recoverable : tuple of exception types, optional
        Exceptions that are recorded as a failure for that column
        instead of aborting the batch
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'threads', 'processes', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar
    desc : str, optional
        Description for the progress bar
    **kwargs
        Additional arguments to pass to func

    Returns
    -------
    results : list
        One entry per column in column order, None where the column failed
    failures : list of ColumnFailure
        Recorded failures, in column order
    """
    columns = [frame.iloc[:, i] for i in range(frame.shape[1])]

    logger.info(f"Processing {len(columns)} columns with {backend} backend")
    outcomes = parallelize(_run_guarded, columns, n_jobs=n_jobs, backend=backend,
                           show_progress=show_progress, desc=desc,
                           column_func=func, recoverable=tuple(recoverable), **kwargs)

    results = [result for result, _ in outcomes]
    failures = [failure for _, failure in outcomes if failure is not None]
    for failure in failures:
        logger.warning(f"Column {failure.column} failed: {failure.message}")

    logger.info(f"Successfully processed {len(columns) - len(failures)} out of {len(columns)} columns")

    return results, failures
