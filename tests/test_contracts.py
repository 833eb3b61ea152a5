import numpy as np
import pytest

from contracts import CheckerboardSpec, CornerSet, Intrinsics, Pose, UndistortConfig
from contracts.versioning import SCHEMA_VERSION, make_envelope, open_envelope
from exceptions import InvalidIntrinsicsError


def test_contracts_instantiation() -> None:
    board = CheckerboardSpec(cols=9, rows=6)
    corners = CornerSet(board=board, points=np.zeros((54, 2)), image_size=(640, 480))
    intrinsics = Intrinsics(fx=300.0, fy=310.0, cx=320.0, cy=240.0, k1=0.1)
    pose = Pose(rvec=[0.0, 0.1, 0.0], tvec=[0.0, 0.0, 5.0])
    config = UndistortConfig(scale=0.8)

    assert board.corner_count == 54
    assert len(corners) == 54
    assert corners.grid().shape == (6, 9, 2)
    assert intrinsics.camera_matrix[1, 1] == 310.0
    assert intrinsics.distortion.tolist() == [0.1, 0.0, 0.0, 0.0]
    assert pose.rotation_matrix().shape == (3, 3)
    assert config.balance is None


def test_object_points_are_row_major() -> None:
    objp = CheckerboardSpec(cols=3, rows=2, square_size=2.0).object_points()
    assert objp.shape == (6, 3)
    np.testing.assert_array_equal(objp[:3, :2], [[0, 0], [2, 0], [4, 0]])
    np.testing.assert_array_equal(objp[3:, :2], [[0, 2], [2, 2], [4, 2]])
    assert np.all(objp[:, 2] == 0)


@pytest.mark.parametrize("cols,rows", [(1, 5), (5, 0), (2.5, 4)])
def test_checkerboard_rejects_bad_dimensions(cols, rows) -> None:
    with pytest.raises(ValueError):
        CheckerboardSpec(cols=cols, rows=rows)


def test_corner_set_length_must_match_board() -> None:
    with pytest.raises(ValueError, match="expected 54"):
        CornerSet(board=CheckerboardSpec(9, 6), points=np.zeros((53, 2)), image_size=(640, 480))


def test_corner_set_points_are_read_only() -> None:
    corners = CornerSet(board=CheckerboardSpec(2, 2), points=np.zeros((4, 2)), image_size=(10, 10))
    with pytest.raises(ValueError):
        corners.points[0, 0] = 1.0


def test_intrinsics_vector_round_trip() -> None:
    intrinsics = Intrinsics(fx=300.0, fy=310.0, cx=320.0, cy=240.0, k1=0.1, k2=-0.02, k3=0.003, k4=-0.001)
    assert Intrinsics.from_vector(intrinsics.as_vector()) == intrinsics
    restored = Intrinsics.from_matrices(intrinsics.camera_matrix, intrinsics.distortion)
    assert restored == intrinsics
    assert intrinsics.to_dict()["D"] == [0.1, -0.02, 0.003, -0.001]


@pytest.mark.parametrize(
    "K,D",
    [
        (np.eye(2), [0, 0, 0, 0]),
        (np.eye(3), [0, 0, 0]),
        (np.eye(3), [0, 0, 0, 0, 0]),
        ([[0, 0, 1], [0, 1, 1], [0, 0, 1]], [0, 0, 0, 0]),
        ([[np.nan, 0, 1], [0, 1, 1], [0, 0, 1]], [0, 0, 0, 0]),
        ("not a matrix", [0, 0, 0, 0]),
    ],
)
def test_intrinsics_from_matrices_rejects_malformed(K, D) -> None:
    with pytest.raises(InvalidIntrinsicsError):
        Intrinsics.from_matrices(K, D)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"scale": 0.0},
        {"fov_scale": -1.0},
        {"balance": 1.5},
        {"output_size": (0, 10)},
        {"interpolation": "cubic"},
    ],
)
def test_undistort_config_validation(kwargs) -> None:
    with pytest.raises(ValueError):
        UndistortConfig(**kwargs)


def test_envelope_round_trip() -> None:
    envelope = make_envelope({"K": [[1, 0, 0], [0, 1, 0], [0, 0, 1]]})
    assert envelope["schema_version"] == SCHEMA_VERSION
    assert open_envelope(envelope)["K"][2][2] == 1


def test_envelope_rejects_other_major_version() -> None:
    with pytest.raises(ValueError, match="schema version"):
        open_envelope({"schema_version": "2.0.0", "payload": {}})
    with pytest.raises(ValueError, match="payload"):
        open_envelope({"schema_version": SCHEMA_VERSION})
