import yaml
import logging
import copy
from pathlib import Path
import json

logger = logging.getLogger('histocorr.config')

def read_config(config_path):
    """
    Read a configuration file in YAML or JSON format

    Parameters
    ----------
    config_path : str or Path
        Path to the configuration file

    Returns
    -------
    dict
        Configuration dictionary
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix == '.yaml' or suffix == '.yml':
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    elif suffix == '.json':
        with open(config_path, 'r') as f:
            config = json.load(f)
    else:
        raise ValueError(f"Unsupported configuration file format: {suffix}")

    return config or {}

def validate_config(config):
    """
    Validate a configuration dictionary

    Parameters
    ----------
    config : dict
        Configuration dictionary, usually already merged with defaults

    Returns
    -------
    bool
        True if configuration is valid

    Raises
    ------
    ValueError
        If configuration is invalid
    """
    required_sections = ['outliers', 'correlation', 'ranking', 'parallel']

    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required configuration section: {section}")

    outliers = config['outliers']
    if outliers['nmads'] <= 0:
        raise ValueError(f"outliers.nmads must be positive, got {outliers['nmads']}")
    if outliers['min_observations'] < 0:
        raise ValueError(f"outliers.min_observations must be non-negative, got {outliers['min_observations']}")

    correlation = config['correlation']
    if not isinstance(correlation['decimals'], int) or correlation['decimals'] < 0:
        raise ValueError(f"correlation.decimals must be a non-negative integer, got {correlation['decimals']}")
    if correlation['min_periods'] < 2:
        raise ValueError(f"correlation.min_periods must be at least 2, got {correlation['min_periods']}")

    ranking = config['ranking']
    if ranking['mode'] not in ('threshold', 'top_k'):
        raise ValueError(f"Unsupported ranking mode: {ranking['mode']}")
    if ranking['threshold'] < 0:
        raise ValueError(f"ranking.threshold must be non-negative, got {ranking['threshold']}")
    if not isinstance(ranking['k'], int) or ranking['k'] < 1:
        raise ValueError(f"ranking.k must be a positive integer, got {ranking['k']}")

    if config['parallel']['backend'] not in ('threads', 'processes', 'serial'):
        raise ValueError(f"Unsupported backend: {config['parallel']['backend']}")

    features = config.get('features', {})
    if features.get('on_out_of_bounds', 'raise') not in ('raise', 'missing'):
        raise ValueError(f"Unsupported out-of-bounds policy: {features['on_out_of_bounds']}")

    return True

def update_config(config, overrides):
    """
    Update a configuration dictionary with override values

    Parameters
    ----------
    config : dict
        Original configuration dictionary
    overrides : dict
        Dictionary with override values

    Returns
    -------
    dict
        Updated configuration dictionary
    """
    updated_config = copy.deepcopy(config)
    def _update_dict(d, u):
        for k, v in u.items():
            if isinstance(v, dict) and k in d and isinstance(d[k], dict):
                d[k] = _update_dict(d[k], v)
            else:
                d[k] = copy.deepcopy(v)
        return d

    return _update_dict(updated_config, overrides or {})

def resolve_config(config=None):
    """Merge a user configuration over the defaults and validate it"""
    resolved = update_config(get_parameter_defaults(), config or {})
    validate_config(resolved)
    return resolved

def write_config(config, output_path):
    """
    Write a configuration dictionary to a file

    Parameters
    ----------
    config : dict
        Configuration dictionary
    output_path : str or Path
        Path to write the configuration file

    Returns
    -------
    Path
        Path to the written configuration file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    suffix = output_path.suffix.lower()

    if suffix == '.yaml' or suffix == '.yml':
        with open(output_path, 'w') as f:
            yaml.dump(config, f, default_flow_style=False)
    elif suffix == '.json':
        with open(output_path, 'w') as f:
            json.dump(config, f, indent=2)
    else:
        raise ValueError(f"Unsupported configuration file format: {suffix}")

    return output_path

def get_parameter_defaults():
    """
    Get default parameter values for all pipeline components

    Returns
    -------
    dict
        Dictionary with default parameter values
    """
    defaults = {
        'features': {
            'channels': ['red', 'green', 'blue', 'grayscale', 'hue', 'saturation', 'lightness'],
            'scale_factor_key': 'tissue_lowres_scalef',
            'on_out_of_bounds': 'raise',
            'aggregate': False,
            'statistics': ['mean', 'median', 'mode'],
            'radius': None
        },
        'outliers': {
            'nmads': 3.0,
            'min_observations': 100,
            'invert_zero_median': True,
            'filter_features': False
        },
        'correlation': {
            'decimals': 3,
            'min_periods': 2
        },
        'ranking': {
            'mode': 'threshold',
            'threshold': 0.3,
            'k': 10,
            'mask_below': False
        },
        'parallel': {
            'n_jobs': -1,
            'backend': 'threads',
            'show_progress': False
        }
    }

    return defaults

def get_parameter_descriptions():
    """
    Get descriptions of all configurable parameters

    Returns
    -------
    dict
        Dictionary with parameter descriptions
    """
    descriptions = {
        'features': {
            'channels': 'Image channels to extract per spot',
            'scale_factor_key': 'Scale factor mapping full-resolution coordinates onto the image',
            'on_out_of_bounds': "What to do with spots outside the image ('raise' or 'missing')",
            'aggregate': 'Whether to summarise several pixels per spot',
            'statistics': 'Per-spot statistics when aggregating (mean, median, mode)',
            'radius': 'Spot radius in image pixels when aggregating; derived from spot_diameter_fullres if null'
        },
        'outliers': {
            'nmads': 'Number of median absolute deviations beyond which a value is an outlier',
            'min_observations': 'Minimum number of non-missing spots to keep a column',
            'invert_zero_median': 'Keep only the outliers for genes with zero median expression',
            'filter_features': 'Whether to also filter outliers in the pixel features'
        },
        'correlation': {
            'decimals': 'Number of decimal digits to round coefficients to',
            'min_periods': 'Minimum number of complete spot pairs per coefficient'
        },
        'ranking': {
            'mode': "Gene selection mode ('threshold' or 'top_k')",
            'threshold': 'Absolute correlation cut-off for threshold mode',
            'k': 'Number of genes per feature for top_k mode',
            'mask_below': 'Blank out cells below the threshold in threshold mode'
        },
        'parallel': {
            'n_jobs': 'Number of parallel workers (-1 for all cores)',
            'backend': "Worker backend ('threads', 'processes' or 'serial')",
            'show_progress': 'Whether to show progress bars'
        }
    }

    return descriptions
