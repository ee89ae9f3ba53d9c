import scanpy as sc
import numpy as np
import pandas as pd
import json
import logging
from pathlib import Path

from histocorr.core.exceptions import MalformedInput

logger = logging.getLogger('histocorr.core.data_loader')

POSITION_COLUMNS = ['in_tissue', 'array_row', 'array_col', 'pxl_row_in_fullres', 'pxl_col_in_fullres']

def load_data(input_path, format="10x_visium", **kwargs):
    """
    Load data from various formats into an AnnData object

    Parameters
    ----------
    input_path : str
        Path to the input data
    format : str
        Format of the input data
        Supported formats: 10x_visium, anndata
    **kwargs : dict
        Additional arguments to pass to the reader function

    Returns
    -------
    adata : AnnData
        AnnData object containing the loaded data
    """
    logger.info(f"Loading data from {input_path} (format: {format})")

    if format == "10x_visium":
        adata = load_visium(input_path, **kwargs)
    elif format == "anndata":
        adata = sc.read_h5ad(input_path)
    else:
        raise ValueError(f"Unsupported data format: {format}")

    return adata

def load_visium(path, library_id=None, **kwargs):
    """
    Read a Space Ranger output directory

    Parameters
    ----------
    path : str or Path
        Path to the Space Ranger ``outs`` directory
    library_id : str, optional
        Library ID to store the images and scale factors under
    **kwargs
        Additional arguments for squidpy.read.visium

    Returns
    -------
    adata : AnnData
        AnnData object with counts, ``obsm['spatial']`` and
        ``uns['spatial'][library_id]`` images and scale factors
    """
    import squidpy as sq

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Visium directory not found: {path}")

    adata = sq.read.visium(path, library_id=library_id, **kwargs)
    adata.var_names_make_unique()

    logger.info(f"Loaded Visium dataset with {adata.n_obs} spots and {adata.n_vars} genes")

    return adata

def read_tissue_positions(path, in_tissue_only=False):
    """
    Read a Space Ranger tissue positions file

    Accepts both the headerless ``tissue_positions_list.csv`` and the
    newer ``tissue_positions.csv`` with a header row.

    Parameters
    ----------
    path : str or Path
        Path to the positions file
    in_tissue_only : bool, optional
        Whether to keep only spots flagged as covered by tissue

    Returns
    -------
    pandas.DataFrame
        Table indexed by barcode with the columns in POSITION_COLUMNS
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tissue positions file not found: {path}")

    with open(path) as f:
        first = f.readline()
    has_header = first.split(',')[0].strip() == 'barcode'
    positions = pd.read_csv(path, header=0 if has_header else None)
    if positions.shape[1] != len(POSITION_COLUMNS) + 1:
        raise MalformedInput(f"Expected {len(POSITION_COLUMNS) + 1} columns in {path}, "
                             f"found {positions.shape[1]}")
    positions.columns = ['barcode'] + POSITION_COLUMNS
    positions = positions.set_index('barcode')
    if not positions.index.is_unique:
        raise MalformedInput(f"Duplicate barcodes in {path}")

    if in_tissue_only:
        n_total = len(positions)
        positions = positions[positions['in_tissue'] == 1]
        logger.info(f"Kept {len(positions)} of {n_total} spots under tissue")

    return positions

def read_scalefactors(path):
    """Read ``scalefactors_json.json`` into a dictionary"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scale factor file not found: {path}")
    with open(path) as f:
        scalefactors = json.load(f)
    logger.info(f"Read scale factors: {', '.join(scalefactors)}")
    return scalefactors

def expression_from_anndata(adata, layer=None, gene_key=None):
    """
    Extract a dense barcode x gene expression table

    Parameters
    ----------
    adata : AnnData
        AnnData object with (log-normalised) expression
    layer : str, optional
        Layer to read instead of ``adata.X``
    gene_key : str, optional
        Column of ``adata.var`` to use as gene identifiers (e.g.
        'gene_ids'). If None, ``var_names`` are used

    Returns
    -------
    pandas.DataFrame
        Expression matrix indexed by barcode
    """
    matrix = adata.layers[layer] if layer is not None else adata.X
    if hasattr(matrix, 'toarray'):
        matrix = matrix.toarray()
    if gene_key is None:
        genes = adata.var_names
    else:
        if gene_key not in adata.var:
            raise ValueError(f"Gene key {gene_key} not found in adata.var")
        genes = pd.Index(adata.var[gene_key].astype(str))
    expression = pd.DataFrame(np.asarray(matrix, dtype=float), index=adata.obs_names.copy(),
                              columns=pd.Index(genes, name='gene_id'))
    if not expression.columns.is_unique:
        raise MalformedInput("Gene identifiers are not unique")
    return expression

def spot_positions_from_anndata(adata, spatial_key='spatial'):
    """
    Full-resolution spot coordinates from ``adata.obsm[spatial_key]``

    The first coordinate is the pixel column (x), the second the pixel row (y).
    """
    if spatial_key not in adata.obsm:
        raise MalformedInput(f"No spatial coordinates found in adata.obsm['{spatial_key}']")
    coords = np.asarray(adata.obsm[spatial_key], dtype=float)
    return pd.DataFrame({'pxl_row_in_fullres': coords[:, 1], 'pxl_col_in_fullres': coords[:, 0]},
                        index=adata.obs_names.copy())

def lowres_image_from_anndata(adata, library_id=None, image_key='lowres',
                              scale_factor_key='tissue_lowres_scalef'):
    """
    Image and matching scale factor stored by the Visium reader

    Parameters
    ----------
    adata : AnnData
        AnnData object with ``uns['spatial']``
    library_id : str, optional
        Library ID. If None, the first one is used
    image_key : str, optional
        Image to return ('lowres' or 'hires')
    scale_factor_key : str, optional
        Scale factor matching ``image_key``

    Returns
    -------
    image : numpy.ndarray
    scale_factor : float
    """
    if 'spatial' not in adata.uns or len(adata.uns['spatial']) == 0:
        raise MalformedInput("No spatial image information found in AnnData object")
    if library_id is None:
        library_id = next(iter(adata.uns['spatial']))
        logger.info(f"Using library ID: {library_id}")
    if library_id not in adata.uns['spatial']:
        raise MalformedInput(f"Library ID {library_id} not found in spatial image information")

    library = adata.uns['spatial'][library_id]
    if image_key not in library.get('images', {}):
        raise MalformedInput(f"Image {image_key} not found for library {library_id}")
    if scale_factor_key not in library.get('scalefactors', {}):
        raise MalformedInput(f"Scale factor {scale_factor_key} not found for library {library_id}")

    return np.asarray(library['images'][image_key]), float(library['scalefactors'][scale_factor_key])
