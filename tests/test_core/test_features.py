"""Tests for spot coordinate scaling and pixel feature extraction."""

import numpy as np
import pandas as pd
import pytest

from histocorr.core.exceptions import MalformedInput, OutOfBoundsCoordinate
from histocorr.core.features import (
    CHANNELS,
    channels_from_rgb,
    check_bounds,
    extract_spot_features,
    extract_spot_pixels,
    scale_coordinates,
)


@pytest.fixture
def positions():
    return pd.DataFrame(
        {"pxl_row_in_fullres": [4.0, 5.0, 7.0, 0.0], "pxl_col_in_fullres": [2.0, 3.0, 1.0, 9.0]},
        index=["AAA-1", "CCC-1", "GGG-1", "TTT-1"],
    )


@pytest.fixture
def image():
    return np.arange(20, dtype=float).reshape(4, 5)


class TestScaleCoordinates:
    def test_ties_round_up(self, positions):
        coords = scale_coordinates(positions, 0.5)
        # 2.5 -> 3 and 3.5 -> 4 (not banker's rounding)
        assert coords.loc["CCC-1", "row"] == 3
        assert coords.loc["GGG-1", "row"] == 4
        assert coords.loc["CCC-1", "col"] == 2
        assert coords.loc["GGG-1", "col"] == 1

    def test_matches_scaled_round_half_up(self, positions):
        scale = 0.37
        coords = scale_coordinates(positions, scale)
        expected_rows = np.floor(positions["pxl_row_in_fullres"] * scale + 0.5).astype(int)
        np.testing.assert_array_equal(coords["row"].to_numpy(), expected_rows.to_numpy())

    def test_preserves_spot_order_and_does_not_mutate(self, positions):
        before = positions.copy()
        coords = scale_coordinates(positions, 0.5)
        assert list(coords.index) == list(positions.index)
        assert list(coords.columns) == ["row", "col"]
        pd.testing.assert_frame_equal(positions, before)

    def test_duplicate_barcodes_rejected(self, positions):
        duplicated = pd.concat([positions, positions.iloc[:1]])
        with pytest.raises(MalformedInput):
            scale_coordinates(duplicated, 0.5)

    def test_non_positive_scale_rejected(self, positions):
        with pytest.raises(MalformedInput):
            scale_coordinates(positions, 0)

    def test_missing_column_rejected(self, positions):
        with pytest.raises(MalformedInput, match="pxl_col_in_fullres"):
            scale_coordinates(positions.drop(columns="pxl_col_in_fullres"), 0.5)


class TestExtractSpotFeatures:
    def test_direct_lookup(self, image):
        coords = pd.DataFrame({"row": [0, 3, 2], "col": [0, 4, 1]}, index=["a", "b", "c"])
        features = extract_spot_features({"red": image, "green": image * 2}, coords)
        assert list(features.columns) == ["red", "green"]
        assert list(features.index) == ["a", "b", "c"]
        assert features.loc["b", "red"] == image[3, 4]
        assert features.loc["c", "red"] == image[2, 1]
        assert features.loc["c", "green"] == 2 * image[2, 1]

    def test_out_of_bounds_raises(self, image):
        coords = pd.DataFrame({"row": [0, 4], "col": [0, 0]}, index=["a", "b"])
        with pytest.raises(OutOfBoundsCoordinate) as excinfo:
            extract_spot_features({"red": image}, coords)
        assert excinfo.value.barcode == "b"
        assert excinfo.value.row == 4
        assert excinfo.value.shape == (4, 5)

    def test_negative_coordinate_is_out_of_bounds(self, image):
        coords = pd.DataFrame({"row": [-1], "col": [0]}, index=["a"])
        with pytest.raises(OutOfBoundsCoordinate):
            extract_spot_features({"red": image}, coords)

    def test_out_of_bounds_missing_policy(self, image):
        coords = pd.DataFrame({"row": [1, 0], "col": [1, 5]}, index=["a", "b"])
        features = extract_spot_features({"red": image}, coords, on_out_of_bounds="missing")
        assert features.loc["a", "red"] == image[1, 1]
        assert np.isnan(features.loc["b", "red"])

    def test_unknown_policy(self, image):
        coords = pd.DataFrame({"row": [1], "col": [1]}, index=["a"])
        with pytest.raises(ValueError):
            extract_spot_features({"red": image}, coords, on_out_of_bounds="clamp")

    def test_channel_shape_mismatch(self, image):
        coords = pd.DataFrame({"row": [1], "col": [1]}, index=["a"])
        with pytest.raises(MalformedInput):
            extract_spot_features({"red": image, "green": np.zeros((3, 3))}, coords)

    def test_scaled_coordinates_lie_in_bounds(self, positions):
        shape = (600, 600)
        coords = scale_coordinates(positions, 0.5)
        assert check_bounds(coords, shape).all()


class TestChannelsFromRgb:
    def test_pure_red_and_grey(self):
        img = np.zeros((1, 2, 3), dtype=np.uint8)
        img[0, 0] = [255, 0, 0]
        img[0, 1] = [128, 128, 128]
        channels = channels_from_rgb(img)

        assert list(channels) == list(CHANNELS)
        assert channels["red"][0, 0] == pytest.approx(1.0)
        assert channels["green"][0, 0] == pytest.approx(0.0)
        assert channels["hue"][0, 0] == pytest.approx(0.0)
        assert channels["saturation"][0, 0] == pytest.approx(1.0)
        assert channels["lightness"][0, 0] == pytest.approx(0.5)
        assert channels["saturation"][0, 1] == pytest.approx(0.0)
        assert channels["grayscale"][0, 1] == pytest.approx(128 / 255, abs=1e-3)

    def test_hue_is_fraction_of_a_turn(self):
        img = np.zeros((2, 3, 3), dtype=np.uint8)
        img[0, 0] = [0, 255, 0]
        img[0, 1] = [0, 0, 255]
        img[0, 2] = [255, 255, 0]
        img[1, :] = [64, 32, 96]
        channels = channels_from_rgb(img, channels=["hue", "lightness", "saturation"])

        assert channels["hue"].dtype == np.float64
        assert channels["hue"][0, 0] == pytest.approx(1 / 3, abs=1e-6)
        assert channels["hue"][0, 1] == pytest.approx(2 / 3, abs=1e-6)
        assert channels["hue"][0, 2] == pytest.approx(1 / 6, abs=1e-6)
        # (64, 32, 96) / 255: hue 270 degrees, lightness 64/255, saturation 0.5
        assert channels["hue"][1, 0] == pytest.approx(0.75, abs=1e-5)
        assert channels["lightness"][1, 0] == pytest.approx(64 / 255, abs=1e-6)
        assert channels["saturation"][1, 0] == pytest.approx(0.5, abs=1e-5)
        assert (channels["hue"] >= 0).all() and (channels["hue"] <= 1).all()

    def test_subset_and_alpha(self):
        img = np.full((2, 2, 4), 255, dtype=np.uint8)
        channels = channels_from_rgb(img, channels=["lightness", "blue"])
        assert list(channels) == ["lightness", "blue"]
        assert channels["lightness"].shape == (2, 2)
        np.testing.assert_allclose(channels["lightness"], 1.0)

    def test_unknown_channel(self):
        with pytest.raises(ValueError):
            channels_from_rgb(np.zeros((2, 2, 3)), channels=["cyan"])

    def test_not_rgb(self):
        with pytest.raises(MalformedInput):
            channels_from_rgb(np.zeros((2, 2)))


class TestExtractSpotPixels:
    def test_disk_inside_image(self):
        image = np.arange(25, dtype=float).reshape(5, 5)
        coords = pd.DataFrame({"row": [2], "col": [2]}, index=["a"])
        samples = extract_spot_pixels({"red": image}, coords, radius=1)
        assert len(samples) == 5
        assert set(zip(samples["row"], samples["col"])) == {(2, 2), (1, 2), (3, 2), (2, 1), (2, 3)}
        assert (samples["red"] == image[samples["row"], samples["col"]]).all()

    def test_pixels_outside_image_skipped(self):
        image = np.ones((5, 5))
        coords = pd.DataFrame({"row": [0, 4], "col": [0, 2]}, index=["corner", "edge"])
        samples = extract_spot_pixels({"red": image}, coords, radius=1)
        counts = samples.groupby("barcode").size()
        assert counts["corner"] == 3
        assert counts["edge"] == 4
        assert list(pd.unique(samples["barcode"])) == ["corner", "edge"]

    def test_zero_radius_is_single_pixel(self):
        image = np.ones((3, 3))
        coords = pd.DataFrame({"row": [1], "col": [1]}, index=["a"])
        assert len(extract_spot_pixels({"red": image}, coords, radius=0)) == 1

    def test_negative_radius(self):
        coords = pd.DataFrame({"row": [1], "col": [1]}, index=["a"])
        with pytest.raises(ValueError):
            extract_spot_pixels({"red": np.ones((3, 3))}, coords, radius=-1)
