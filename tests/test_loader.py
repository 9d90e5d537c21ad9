"""Tests for the PLY scan reader."""

import sys
from pathlib import Path

import numpy as np
import pytest
from plyfile import PlyData, PlyElement

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pose_chain_registration.preprocessing.loader import (
    ObjectReader,
    PlyObjectReader,
    ScanData,
    read_object,
)


def _write_ply(path: Path, points, normals=None, colors=None, faces=None, text=True) -> Path:
    fields = [("x", "f8"), ("y", "f8"), ("z", "f8")]
    if normals is not None:
        fields += [("nx", "f8"), ("ny", "f8"), ("nz", "f8")]
    if colors is not None:
        fields += [("red", "u1"), ("green", "u1"), ("blue", "u1")]

    vertex = np.empty(len(points), dtype=fields)
    vertex["x"], vertex["y"], vertex["z"] = points[:, 0], points[:, 1], points[:, 2]
    if normals is not None:
        vertex["nx"], vertex["ny"], vertex["nz"] = normals[:, 0], normals[:, 1], normals[:, 2]
    if colors is not None:
        vertex["red"], vertex["green"], vertex["blue"] = colors[:, 0], colors[:, 1], colors[:, 2]

    elements = [PlyElement.describe(vertex, "vertex")]
    if faces is not None:
        face = np.empty(len(faces), dtype=[("vertex_indices", "i4", (len(faces[0]),))])
        face["vertex_indices"] = faces
        elements.append(PlyElement.describe(face, "face"))

    PlyData(elements, text=text).write(str(path))
    return path


def test_reads_points_only(tmp_path):
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0], [-1.5, 0.25, 4.0]])
    path = _write_ply(tmp_path / "points.ply", pts, text=False)

    scan = PlyObjectReader().read(path)

    assert isinstance(scan, ScanData)
    assert np.allclose(scan.points, pts)
    assert scan.normals.shape == (0, 3)
    assert scan.colors is None
    assert not scan.has_faces
    assert not scan.has_normals
    assert scan.source_path == path


def test_reads_normals_colors_and_faces(tmp_path):
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0]])
    normals = np.tile([0.0, 0.0, 1.0], (4, 1))
    colors = np.array([[255, 0, 0], [0, 255, 0], [0, 0, 255], [10, 20, 30]], dtype=np.uint8)
    faces = np.array([[0, 1, 2], [1, 3, 2]])
    path = _write_ply(tmp_path / "mesh.ply", pts, normals=normals, colors=colors, faces=faces)

    scan = read_object(path)

    assert np.allclose(scan.normals, normals)
    assert np.allclose(scan.colors, colors)
    assert scan.has_faces
    assert scan.triangles.tolist() == faces.tolist()


def test_reads_tex_coords_and_texture_names(tmp_path):
    vertex = np.array(
        [(0.0, 0.0, 0.0, 0.0, 0.0), (1.0, 0.0, 0.0, 1.0, 0.0), (0.0, 1.0, 0.0, 0.0, 1.0)],
        dtype=[("x", "f8"), ("y", "f8"), ("z", "f8"), ("s", "f4"), ("t", "f4")],
    )
    path = tmp_path / "textured.ply"
    PlyData(
        [PlyElement.describe(vertex, "vertex")],
        text=True,
        comments=["TextureFile bunny_tex.png", "generated for a loader check"],
    ).write(str(path))

    scan = read_object(path)

    assert scan.tex_coords.shape == (3, 2)
    assert np.allclose(scan.tex_coords[1], [1.0, 0.0])
    assert scan.materials == ["bunny_tex.png"]


def test_quad_faces_are_fan_triangulated(tmp_path):
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
    path = _write_ply(tmp_path / "quad.ply", pts, faces=np.array([[0, 1, 2, 3]]))

    scan = PlyObjectReader().read(path)
    assert scan.triangles.tolist() == [[0, 1, 2], [0, 2, 3]]


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PlyObjectReader().read(tmp_path / "missing.ply")


def test_unsupported_format_raises(tmp_path):
    path = tmp_path / "scan.obj"
    path.write_text("v 0 0 0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        PlyObjectReader().read(path)


def test_reader_satisfies_protocol():
    assert isinstance(PlyObjectReader(), ObjectReader)
