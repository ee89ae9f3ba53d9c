import logging
import cv2
import numpy as np
import pandas as pd
from skimage.color import rgb2gray
from skimage.util import img_as_float

from histocorr.core.exceptions import MalformedInput, OutOfBoundsCoordinate

logger = logging.getLogger('histocorr.core.features')

CHANNELS = ('red', 'green', 'blue', 'grayscale', 'hue', 'saturation', 'lightness')

OUT_OF_BOUNDS_POLICIES = ('raise', 'missing')

def scale_coordinates(positions, scale_factor, col_key='pxl_col_in_fullres',
                      row_key='pxl_row_in_fullres'):
    """
    Map full-resolution spot coordinates onto the low-resolution image

    Each coordinate is scaled and rounded half up, i.e.
    ``floor(raw * scale_factor + 0.5)``, so exact ties move toward
    positive infinity (``2.5 -> 3``, ``-2.5 -> -2``).

    Parameters
    ----------
    positions : pandas.DataFrame
        Spot table indexed by barcode with full-resolution pixel columns
    scale_factor : float
        Sample-specific scale factor, e.g. ``tissue_lowres_scalef``
    col_key : str, optional
        Column holding the full-resolution pixel column (x)
    row_key : str, optional
        Column holding the full-resolution pixel row (y)

    Returns
    -------
    pandas.DataFrame
        New table indexed by barcode with integer columns 'row' and 'col'
    """
    missing = [key for key in (col_key, row_key) if key not in positions.columns]
    if missing:
        raise MalformedInput(f"Spot positions are missing columns: {missing}")
    if not positions.index.is_unique:
        raise MalformedInput("Spot barcodes must be unique")
    if not scale_factor > 0:
        raise MalformedInput(f"Scale factor must be positive, got {scale_factor}")

    raw = positions[[row_key, col_key]].to_numpy(dtype=float)
    scaled = np.floor(raw * scale_factor + 0.5).astype(int)
    coords = pd.DataFrame(scaled, index=positions.index.copy(), columns=['row', 'col'])

    logger.info(f"Scaled {len(coords)} spot coordinates by factor {scale_factor}")

    return coords

def check_bounds(coords, shape):
    """Boolean Series, True where a spot lies inside an image of ``shape``"""
    height, width = shape[:2]
    return ((coords['row'] >= 0) & (coords['row'] < height) &
            (coords['col'] >= 0) & (coords['col'] < width))

def _validate_channels(channels):
    if not channels:
        raise MalformedInput("No channel images provided")
    shapes = {name: np.shape(image) for name, image in channels.items()}
    for name, shape in shapes.items():
        if len(shape) != 2:
            raise MalformedInput(f"Channel {name} must be 2-D, got shape {shape}")
    if len(set(shapes.values())) > 1:
        raise MalformedInput(f"Channel images differ in shape: {shapes}")
    return next(iter(shapes.values()))

def _apply_bounds_policy(coords, shape, on_out_of_bounds):
    if on_out_of_bounds not in OUT_OF_BOUNDS_POLICIES:
        raise ValueError(f"Unsupported out-of-bounds policy: {on_out_of_bounds}")
    inside = check_bounds(coords, shape)
    if not inside.all():
        outside = coords[~inside]
        if on_out_of_bounds == 'raise':
            barcode = outside.index[0]
            raise OutOfBoundsCoordinate(barcode, int(outside['row'].iloc[0]),
                                        int(outside['col'].iloc[0]), tuple(shape))
        logger.warning(f"{len(outside)} spots fall outside image bounds {tuple(shape)}; "
                       f"their features are marked missing")
    return inside

def extract_spot_features(channels, coords, on_out_of_bounds='raise'):
    """
    Read one value per channel at each spot's low-resolution pixel

    Parameters
    ----------
    channels : dict
        Ordered mapping of channel name to 2-D array, all of one shape
    coords : pandas.DataFrame
        Spot table indexed by barcode with integer 'row' and 'col' columns,
        as returned by :func:`scale_coordinates`
    on_out_of_bounds : str, optional
        'raise' to fail on the first spot outside the image, 'missing' to
        mark that spot's features NaN

    Returns
    -------
    pandas.DataFrame
        Feature table indexed by barcode (input order), one column per channel
    """
    shape = _validate_channels(channels)
    inside = _apply_bounds_policy(coords, shape, on_out_of_bounds)

    rows = coords['row'].to_numpy()[inside.to_numpy()]
    cols = coords['col'].to_numpy()[inside.to_numpy()]
    features = pd.DataFrame(np.nan, index=coords.index.copy(), columns=list(channels))
    for name, image in channels.items():
        features.loc[inside.to_numpy(), name] = np.asarray(image, dtype=float)[rows, cols]

    logger.info(f"Extracted {features.shape[1]} channel features for {int(inside.sum())} spots")

    return features

def channels_from_rgb(image, channels=None):
    """
    Split an RGB image into the named channel images

    Parameters
    ----------
    image : numpy.ndarray
        Array of shape (height, width, 3) or (height, width, 4); an alpha
        channel is dropped
    channels : list of str, optional
        Channels to return. Defaults to all of :data:`CHANNELS`

    Returns
    -------
    dict
        Channel name to 2-D float array with values in [0, 1]
    """
    if channels is None:
        channels = CHANNELS
    unknown = [name for name in channels if name not in CHANNELS]
    if unknown:
        raise ValueError(f"Unsupported channels: {unknown}")
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise MalformedInput(f"Expected an RGB image of shape (h, w, 3), got {image.shape}")
    rgb = img_as_float(image[..., :3])

    available = {
        'red': lambda: rgb[..., 0],
        'green': lambda: rgb[..., 1],
        'blue': lambda: rgb[..., 2],
        'grayscale': lambda: rgb2gray(rgb),
    }
    result = {}
    hls = None
    for name in channels:
        if name in available:
            result[name] = np.array(available[name](), dtype=float)
            continue
        if hls is None:
            # float input gives hue in degrees, lightness and saturation in [0, 1]
            hls = cv2.cvtColor(np.ascontiguousarray(rgb, dtype=np.float32), cv2.COLOR_RGB2HLS)
            hls[..., 0] /= 360.0
        result[name] = np.array(hls[..., ('hue', 'lightness', 'saturation').index(name)], dtype=float)

    return result

def extract_spot_pixels(channels, coords, radius, on_out_of_bounds='raise'):
    """
    Collect every pixel sample that falls within a spot

    Used for high-resolution imagery where one spot covers several pixels.
    Pixels whose centre is within ``radius`` of the spot centre are kept;
    pixels outside the image are skipped.

    Parameters
    ----------
    channels : dict
        Ordered mapping of channel name to 2-D array
    coords : pandas.DataFrame
        Spot table indexed by barcode with integer 'row' and 'col' columns
    radius : float
        Spot radius in image pixels
    on_out_of_bounds : str, optional
        Policy for spot centres outside the image, see
        :func:`extract_spot_features`

    Returns
    -------
    pandas.DataFrame
        Long table with columns 'barcode', 'row', 'col' and one column per
        channel, grouped by spot in input order
    """
    if radius < 0:
        raise ValueError(f"Radius must be non-negative, got {radius}")
    shape = _validate_channels(channels)
    inside = _apply_bounds_policy(coords, shape, on_out_of_bounds)
    height, width = shape

    reach = int(np.floor(radius))
    d_row, d_col = np.mgrid[-reach:reach + 1, -reach:reach + 1]
    disk = (d_row ** 2 + d_col ** 2) <= radius ** 2
    d_row, d_col = d_row[disk], d_col[disk]

    barcodes, rows, cols = [], [], []
    for barcode, (row, col) in coords.loc[inside.to_numpy(), ['row', 'col']].iterrows():
        r = row + d_row
        c = col + d_col
        keep = (r >= 0) & (r < height) & (c >= 0) & (c < width)
        barcodes.extend([barcode] * int(keep.sum()))
        rows.append(r[keep])
        cols.append(c[keep])

    rows = np.concatenate(rows) if rows else np.array([], dtype=int)
    cols = np.concatenate(cols) if cols else np.array([], dtype=int)
    samples = pd.DataFrame({'barcode': barcodes, 'row': rows, 'col': cols})
    for name, image in channels.items():
        samples[name] = np.asarray(image, dtype=float)[rows, cols]

    logger.info(f"Collected {len(samples)} pixel samples for {int(inside.sum())} spots")

    return samples
