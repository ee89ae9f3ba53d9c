"""Shared fixtures: a small synthetic sample with known gene/feature relationships."""

import numpy as np
import pandas as pd
import pytest

from histocorr.core.genes import GeneLookup

N_SPOTS = 150


@pytest.fixture
def barcodes():
    return [f"SPOT{i:04d}-1" for i in range(N_SPOTS)]


@pytest.fixture
def feature_frame(barcodes):
    """Three pixel features drawn independently per spot."""
    rng = np.random.default_rng(0)
    return pd.DataFrame(
        {
            "red": rng.uniform(0, 1, N_SPOTS),
            "blue": rng.uniform(0, 1, N_SPOTS),
            "lightness": rng.uniform(0, 1, N_SPOTS),
        },
        index=barcodes,
    )


@pytest.fixture
def expression_frame(feature_frame):
    """Four genes.

    ENSG01 tracks red, ENSG02 tracks blue inversely, ENSG03 is noise and
    ENSG04 is expressed in only 10% of spots (zero median).
    """
    rng = np.random.default_rng(1)
    sparse = np.zeros(N_SPOTS)
    sparse[::10] = rng.uniform(2, 4, N_SPOTS // 10)
    return pd.DataFrame(
        {
            "ENSG01": 5 + 2 * feature_frame["red"].to_numpy() + rng.normal(0, 0.1, N_SPOTS),
            "ENSG02": 5 - 2 * feature_frame["blue"].to_numpy() + rng.normal(0, 0.1, N_SPOTS),
            "ENSG03": rng.uniform(4, 6, N_SPOTS),
            "ENSG04": sparse,
        },
        index=feature_frame.index.copy(),
    )


@pytest.fixture
def lookup():
    return GeneLookup({"ENSG01": "GENE1", "ENSG02": "GENE2", "ENSG03": "GENE3", "ENSG04": "GENE4"})


@pytest.fixture
def example_matrix():
    """3 genes x 2 features correlation matrix."""
    return pd.DataFrame(
        [[0.1, 0.4], [0.5, 0.05], [0.2, 0.25]],
        index=pd.Index(["ENSG01", "ENSG02", "ENSG03"], name="gene_id"),
        columns=["f1", "f2"],
    )
