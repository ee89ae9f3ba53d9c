"""Tests for reading Space Ranger outputs and AnnData adapters."""

import json

import anndata as ad
import numpy as np
import pandas as pd
import pytest
from scipy import sparse

from histocorr.core.data_loader import (
    POSITION_COLUMNS,
    expression_from_anndata,
    load_data,
    lowres_image_from_anndata,
    read_scalefactors,
    read_tissue_positions,
    spot_positions_from_anndata,
)
from histocorr.core.exceptions import MalformedInput

ROWS = [
    ["AAA-1", 1, 0, 0, 100, 200],
    ["CCC-1", 0, 0, 2, 150, 260],
    ["GGG-1", 1, 1, 1, 210, 230],
]


class TestReadTissuePositions:
    def test_headerless(self, tmp_path):
        path = tmp_path / "tissue_positions_list.csv"
        pd.DataFrame(ROWS).to_csv(path, header=False, index=False)
        positions = read_tissue_positions(path)
        assert list(positions.columns) == POSITION_COLUMNS
        assert list(positions.index) == ["AAA-1", "CCC-1", "GGG-1"]
        assert positions.loc["GGG-1", "pxl_col_in_fullres"] == 230

    def test_with_header_and_tissue_filter(self, tmp_path):
        path = tmp_path / "tissue_positions.csv"
        pd.DataFrame(ROWS, columns=["barcode"] + POSITION_COLUMNS).to_csv(path, index=False)
        positions = read_tissue_positions(path, in_tissue_only=True)
        assert list(positions.index) == ["AAA-1", "GGG-1"]

    def test_wrong_column_count(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame([r[:4] for r in ROWS]).to_csv(path, header=False, index=False)
        with pytest.raises(MalformedInput):
            read_tissue_positions(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_tissue_positions(tmp_path / "absent.csv")


def test_read_scalefactors(tmp_path):
    path = tmp_path / "scalefactors_json.json"
    path.write_text(json.dumps({"tissue_lowres_scalef": 0.05, "spot_diameter_fullres": 89.4}))
    assert read_scalefactors(path)["tissue_lowres_scalef"] == 0.05


def test_load_data_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        load_data(tmp_path, format="loom")


class TestAnnDataAdapters:
    @pytest.fixture
    def adata(self):
        X = sparse.csr_matrix(np.array([[0.0, 1.5], [2.0, 0.0], [0.5, 0.5]]))
        var = pd.DataFrame({"gene_ids": ["ENSG01", "ENSG02"]}, index=["GENE1", "GENE2"])
        obs = pd.DataFrame(index=["AAA-1", "CCC-1", "GGG-1"])
        adata = ad.AnnData(X=X, obs=obs, var=var)
        adata.layers["counts"] = np.arange(6, dtype=float).reshape(3, 2)
        adata.obsm["spatial"] = np.array([[200, 100], [260, 150], [230, 210]])
        adata.uns["spatial"] = {
            "lib": {"images": {"lowres": np.zeros((4, 4, 3))}, "scalefactors": {"tissue_lowres_scalef": 0.02}}
        }
        return adata

    def test_expression_dense(self, adata):
        expression = expression_from_anndata(adata)
        assert list(expression.columns) == ["GENE1", "GENE2"]
        assert expression.loc["CCC-1", "GENE1"] == 2.0

    def test_expression_by_gene_id_and_layer(self, adata):
        expression = expression_from_anndata(adata, layer="counts", gene_key="gene_ids")
        assert list(expression.columns) == ["ENSG01", "ENSG02"]
        assert expression.loc["GGG-1", "ENSG02"] == 5.0

    def test_unknown_gene_key(self, adata):
        with pytest.raises(ValueError):
            expression_from_anndata(adata, gene_key="symbol")

    def test_spot_positions(self, adata):
        positions = spot_positions_from_anndata(adata)
        assert positions.loc["AAA-1", "pxl_col_in_fullres"] == 200
        assert positions.loc["AAA-1", "pxl_row_in_fullres"] == 100

    def test_lowres_image(self, adata):
        image, scale = lowres_image_from_anndata(adata)
        assert image.shape == (4, 4, 3)
        assert scale == 0.02

    def test_lowres_image_missing(self, adata):
        with pytest.raises(MalformedInput):
            lowres_image_from_anndata(adata, image_key="hires")
        with pytest.raises(MalformedInput):
            lowres_image_from_anndata(adata, library_id="other")
