"""Tests for dataset loading and rect generation helpers."""

import logging

import cv2
import numpy as np
import pytest
from scipy.io import savemat

from FaceAlignment import ComputeError, DefaultParameters, TrainCascade
from FaceDataset import (
    ChooseBoxes,
    ChooseRect,
    DetectFaces,
    ExportRects,
    GenerateRects,
    ImportRects,
    LoadBBox,
    LoadDatabase,
    LoadDetectors,
    LoadImage,
    LoadImageList,
    ReadShape,
)
from ShapeSpace import Bbox2Rect, CreateRect, RatioRectShapeOverlap, Rect2Bbox, Shape2Normalized, ShapeBounds


def write_pts(path, shape):
    lines = ["version: 1", "n_points:  %d" % len(shape), "{"]
    lines += ["%f %f" % (x, y) for x, y in shape]
    lines.append("}")
    path.write_text("\n".join(lines) + "\n")


SHAPE = np.array([[10.5, 20.0], [30.0, 22.25], [20.0, 40.0]])
# landmarks spanning 150..250 of a 400x400 image
BIG_SHAPE = np.array([[150.0, 150.0], [250.0, 180.0], [200.0, 250.0]])


def write_big_face(directory, name="face"):
    cv2.imwrite(str(directory / (name + ".png")), np.zeros((400, 400), dtype=np.uint8))
    write_pts(directory / (name + ".pts"), BIG_SHAPE)


def write_bbox_mat(path, entries):
    """300-W layout: a cell of structs holding imgName, bb_detector and bb_ground_truth."""
    cell = np.empty((1, len(entries)), dtype=object)
    for i, (name, detector, truth) in enumerate(entries):
        info = np.zeros((1, 1), dtype=[("imgName", object), ("bb_detector", object), ("bb_ground_truth", object)])
        info[0, 0] = (name, np.array([detector], dtype=np.float64), np.array([truth], dtype=np.float64))
        cell[0, i] = info
    savemat(str(path), {"bounding_boxes": cell})


class TestReadShape:
    """Tests for .pts parsing."""

    def test_read(self, tmp_path):
        path = tmp_path / "a.pts"
        write_pts(path, SHAPE)
        np.testing.assert_allclose(ReadShape(str(path)), SHAPE)

    def test_count_mismatch(self, tmp_path):
        path = tmp_path / "bad.pts"
        path.write_text("version: 1\nn_points: 4\n{\n1 2\n3 4\n}\n")
        with pytest.raises(ValueError):
            ReadShape(str(path))


class TestLoadDatabase:
    """Tests for loading image/landmark pairs."""

    def test_load_and_skip_unreadable(self, tmp_path):
        img = np.full((60, 80), 128, dtype=np.uint8)
        cv2.imwrite(str(tmp_path / "face1.png"), img)
        write_pts(tmp_path / "face1.pts", SHAPE)
        (tmp_path / "face2.jpg").write_bytes(b"not an image")
        write_pts(tmp_path / "face2.pts", SHAPE)
        cv2.imwrite(str(tmp_path / "nolabels.png"), img)

        images, shapes, scalings = LoadDatabase(str(tmp_path))
        assert len(images) == 1
        assert images[0].shape == (60, 80)
        assert images[0].dtype == np.float32
        np.testing.assert_allclose(shapes[0], SHAPE)
        assert scalings == [1.0]

    def test_downscale(self, tmp_path):
        cv2.imwrite(str(tmp_path / "big.png"), np.zeros((100, 200), dtype=np.uint8))
        write_pts(tmp_path / "big.pts", SHAPE)
        images, shapes, scalings = LoadDatabase(str(tmp_path), max_size=50)
        assert images[0].shape == (25, 50)
        assert scalings[0] == pytest.approx(0.25)
        np.testing.assert_allclose(shapes[0], SHAPE * 0.25)

    def test_image_list(self, tmp_path):
        cv2.imwrite(str(tmp_path / "x.png"), np.zeros((10, 10), dtype=np.uint8))
        write_pts(tmp_path / "x.pts", SHAPE)
        (tmp_path / "list").write_text("x.png\n\n")
        images, _, _ = LoadImageList(str(tmp_path), str(tmp_path / "list"))
        assert len(images) == 1

    def test_missing_image(self, tmp_path):
        img, scale = LoadImage(str(tmp_path / "none.png"))
        assert img is None
        assert scale == 1.0

    def test_images_without_landmarks_are_logged(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="FaceDataset")
        cv2.imwrite(str(tmp_path / "face1.png"), np.zeros((20, 20), dtype=np.uint8))
        write_pts(tmp_path / "face1.pts", SHAPE)
        cv2.imwrite(str(tmp_path / "nolabels.png"), np.zeros((20, 20), dtype=np.uint8))
        images, _, _ = LoadDatabase(str(tmp_path))
        assert len(images) == 1
        assert "nolabels.png" in caplog.text
        assert "loaded 1 images, skipped 0 unreadable, 1 without landmarks" in caplog.text

    def test_names(self, tmp_path):
        write_big_face(tmp_path, "a")
        write_big_face(tmp_path, "b")
        _, _, _, names = LoadDatabase(str(tmp_path), with_names=True)
        assert names == ["a.png", "b.png"]


class TestChooseRect:
    """Tests for picking detector rects or falling back to shape bounds."""

    def test_best_overlap_wins(self):
        faces = [CreateRect(0, 0, 15, 15), CreateRect(5, 15, 35, 45)]
        rect, detected = ChooseRect(faces, SHAPE, (100, 100))
        assert detected
        np.testing.assert_array_equal(rect, faces[1])

    def test_fallback_when_overlap_too_small(self):
        faces = [CreateRect(0, 0, 15, 25)]
        rect, detected = ChooseRect(faces, SHAPE, (100, 100), min_overlap=0.5, match_detector=False)
        assert not detected
        np.testing.assert_array_equal(rect, ShapeBounds(SHAPE))

    def test_fallback_mimics_detector(self):
        rect, detected = ChooseRect([], SHAPE, (100, 100))
        assert not detected
        bounds = ShapeBounds(SHAPE)
        assert rect[3, 0] - rect[0, 0] == pytest.approx(1.25 * (bounds[3, 0] - bounds[0, 0]))


class TestRectFiles:
    """Tests for rect CSV import/export."""

    def test_round_trip(self, tmp_path):
        rects = [CreateRect(1, 2, 3, 4), CreateRect(10.5, 20.25, 30, 40)]
        path = str(tmp_path / "rects.csv")
        ExportRects(path, rects)
        loaded = ImportRects(path)
        assert len(loaded) == 2
        np.testing.assert_allclose(Rect2Bbox(loaded[1]), [10.5, 20.25, 30, 40])

    def test_single_rect(self, tmp_path):
        path = str(tmp_path / "one.csv")
        ExportRects(path, [CreateRect(1, 2, 3, 4)])
        assert len(ImportRects(path)) == 1

    def test_original_coords_round_trip(self, tmp_path):
        write_big_face(tmp_path)
        _, shapes, scalings = LoadDatabase(str(tmp_path), max_size=200)
        rects = [ShapeBounds(shapes[0])]
        path = str(tmp_path / "rects.csv")
        ExportRects(path, rects, scalings)
        np.testing.assert_allclose(Rect2Bbox(ImportRects(path)[0]), [150, 150, 250, 250])
        np.testing.assert_allclose(ImportRects(path, scalings)[0], rects[0])

    def test_scalings_count_mismatch(self, tmp_path):
        path = str(tmp_path / "one.csv")
        ExportRects(path, [CreateRect(1, 2, 3, 4)])
        with pytest.raises(ValueError):
            ImportRects(path, [1.0, 0.5])


class TestBoundingBoxFile:
    """Tests for 300-W style .mat bounding boxes."""

    def test_load(self, tmp_path):
        path = tmp_path / "boxes.mat"
        write_bbox_mat(
            path,
            [("face.png", [140, 140, 260, 260], [150, 150, 250, 250]), ("other.png", [1, 2, 3, 4], [5, 6, 7, 8])],
        )
        boxes = LoadBBox(str(path))
        assert sorted(boxes) == ["face.png", "other.png"]
        np.testing.assert_allclose(boxes["face.png"], [[140, 140, 260, 260], [150, 150, 250, 250]])

    def test_boxes_follow_downscaled_images(self, tmp_path):
        write_big_face(tmp_path)
        images, shapes, scalings, names = LoadDatabase(str(tmp_path), max_size=200, with_names=True)
        path = tmp_path / "boxes.mat"
        write_bbox_mat(path, [("face.png", [140, 140, 260, 260], [150, 150, 250, 250])])
        rects = ChooseBoxes(LoadBBox(str(path)), names, images, shapes, scalings, match_detector=False)
        np.testing.assert_allclose(rects[0], Bbox2Rect([70, 70, 130, 130]))
        assert RatioRectShapeOverlap(rects[0], shapes[0]) == 1.0

    def test_missing_image_falls_back_to_bounds(self, tmp_path):
        write_big_face(tmp_path)
        images, shapes, scalings, names = LoadDatabase(str(tmp_path), max_size=200, with_names=True)
        rects = ChooseBoxes({}, names, images, shapes, scalings, match_detector=False)
        np.testing.assert_allclose(rects[0], ShapeBounds(shapes[0]))


class TestDetectors:
    """Tests for the OpenCV cascade detectors."""

    def test_bad_path(self, tmp_path):
        with pytest.raises(IOError):
            LoadDetectors([str(tmp_path / "missing.xml")])

    def test_blank_image_has_no_faces(self):
        detectors = LoadDetectors([cv2.data.haarcascades + "haarcascade_frontalface_default.xml"])
        assert len(detectors) == 1
        assert DetectFaces(np.zeros((100, 100), dtype=np.float32), detectors) == []


class TestGenerateRects:
    """Tests for per-image rects from detections or shape bounds."""

    def test_fallback_is_counted(self, caplog):
        caplog.set_level(logging.INFO, logger="FaceDataset")
        images = [np.zeros((100, 100), dtype=np.float32)] * 2
        shapes = [SHAPE, SHAPE + 5]
        rects = GenerateRects(images, shapes, [], match_detector=False)
        np.testing.assert_array_equal(rects[1], ShapeBounds(SHAPE + 5))
        assert "detector successful on 0/2 shapes" in caplog.text

    def test_rects_line_up_with_downscaled_shapes(self, tmp_path):
        write_big_face(tmp_path)
        images, shapes, scalings = LoadDatabase(str(tmp_path), max_size=200)
        assert scalings == [0.5]
        rects = GenerateRects(images, shapes, [], match_detector=False)
        np.testing.assert_allclose(Rect2Bbox(rects[0]), [75, 75, 125, 125])
        assert RatioRectShapeOverlap(rects[0], shapes[0]) == 1.0
        normalized = Shape2Normalized(shapes[0], rects[0])
        assert np.all(np.abs(normalized) <= 0.5 + 1e-9)


class TestFaceAlignment:
    """Tests for the top level helpers."""

    def test_error_of_ground_truth_is_zero(self):
        gts = [SHAPE, SHAPE + 1]
        assert ComputeError(gts, gts) == 0

    def test_error_is_normalized(self):
        gt = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        err = ComputeError([gt + np.array([1.0, 0.0])], [gt])
        assert err == pytest.approx(1.0 / np.sqrt(200))

    def test_train_cascade(self, faces):
        images, shapes, rects = faces
        params = DefaultParameters().Replace(
            num_cascades=1, num_trees=3, max_tree_depth=2, num_random_pixel_coordinates=30
        )
        model = TrainCascade(images, shapes, rects, params, seed=1, numInitializationsPerImage=2)
        assert len(model.stages) == 1
        assert len(model.stages[0].trees) == 3
