"""
Scan Loader

This module handles loading scans into memory for registration. The harness
only depends on the ``ObjectReader`` interface; ``PlyObjectReader`` is the
default implementation and reads PLY files with plyfile.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Union, runtime_checkable

import numpy as np
from plyfile import PlyData, PlyParseError

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass
class ScanData:
    """
    A loaded scan.

    ``normals`` and ``colors`` are parallel to ``points`` when present.
    ``triangles`` holds vertex-index triples into ``points``; when it is
    non-empty the point order is load-bearing.

    Attributes:
        points: Nx3 float coordinates
        normals: Nx3 normals, or an empty (0, 3) array
        colors: Optional Nx3 RGB values (0-255)
        tex_coords: Mx2 texture coordinates
        triangles: Kx3 integer vertex indices
        materials: Texture image names referenced by the object
        source_path: File the scan was read from
    """
    points: np.ndarray
    normals: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    colors: Optional[np.ndarray] = None
    tex_coords: np.ndarray = field(default_factory=lambda: np.empty((0, 2)))
    triangles: np.ndarray = field(default_factory=lambda: np.empty((0, 3), dtype=np.int64))
    materials: List[str] = field(default_factory=list)
    source_path: Optional[Path] = None

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_faces(self) -> bool:
        return len(self.triangles) > 0

    @property
    def has_normals(self) -> bool:
        return len(self.normals) > 0 and len(self.normals) == len(self.points)

    @property
    def has_colors(self) -> bool:
        return self.colors is not None and len(self.colors) == len(self.points)

    @property
    def name(self) -> str:
        return self.source_path.name if self.source_path is not None else "<memory>"


@runtime_checkable
class ObjectReader(Protocol):
    """Reads one scan file. Failures raise and abort the run."""

    def read(self, file_path: Union[str, Path]) -> ScanData:
        ...


class PlyObjectReader:
    """
    Reader for PLY scans (ASCII or binary).

    Features:
    - Vertex positions, plus normals and RGB colors when present
    - Per-vertex texture coordinates (``s``/``t`` or ``u``/``v``)
    - Face index lists (``vertex_indices`` or ``vertex_index``), triangulated as fans
    - Texture image names from ``TextureFile`` header comments
    """

    supported_suffixes = (".ply",)

    def read(self, file_path: Union[str, Path]) -> ScanData:
        """
        Load a scan file.

        Args:
            file_path: Path to the PLY file

        Returns:
            ScanData with positions and whatever per-vertex attributes exist

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file format is unsupported, unparsable or has no vertices
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        if file_path.suffix.lower() not in self.supported_suffixes:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        logger.debug(f"Loading scan from {file_path}")

        try:
            ply = PlyData.read(str(file_path))
        except PlyParseError as e:
            raise ValueError(f"Invalid PLY file {file_path}: {e}") from e
        element_names = [el.name for el in ply.elements]
        if "vertex" not in element_names:
            raise ValueError(f"PLY file has no vertex element: {file_path}")

        vertex = ply["vertex"].data
        props = set(vertex.dtype.names or ())

        points = np.column_stack([
            np.asarray(vertex["x"], dtype=np.float64),
            np.asarray(vertex["y"], dtype=np.float64),
            np.asarray(vertex["z"], dtype=np.float64),
        ]) if len(vertex) else np.empty((0, 3))

        normals = np.empty((0, 3))
        if {"nx", "ny", "nz"} <= props:
            normals = np.column_stack([
                np.asarray(vertex["nx"], dtype=np.float64),
                np.asarray(vertex["ny"], dtype=np.float64),
                np.asarray(vertex["nz"], dtype=np.float64),
            ])

        colors = None
        if {"red", "green", "blue"} <= props:
            colors = np.column_stack([
                np.asarray(vertex["red"], dtype=np.float64),
                np.asarray(vertex["green"], dtype=np.float64),
                np.asarray(vertex["blue"], dtype=np.float64),
            ])

        tex_coords = np.empty((0, 2))
        for u_name, v_name in (("s", "t"), ("u", "v"), ("texture_u", "texture_v")):
            if {u_name, v_name} <= props:
                tex_coords = np.column_stack([
                    np.asarray(vertex[u_name], dtype=np.float64),
                    np.asarray(vertex[v_name], dtype=np.float64),
                ])
                break

        triangles = np.empty((0, 3), dtype=np.int64)
        if "face" in element_names:
            triangles = self._triangulate(ply["face"].data)

        # Textured meshes name their images in "comment TextureFile <name>" header lines
        materials = [
            c.split(None, 1)[1].strip() for c in ply.comments
            if c.startswith("TextureFile") and len(c.split(None, 1)) == 2
        ]

        scan = ScanData(
            points=points,
            normals=normals,
            colors=colors,
            tex_coords=tex_coords,
            triangles=triangles,
            materials=materials,
            source_path=file_path,
        )
        logger.info(
            f"Loaded {file_path.name}: {len(points)} points, "
            f"{len(normals)} normals, {len(triangles)} faces"
        )
        return scan

    @staticmethod
    def _triangulate(face_data: np.ndarray) -> np.ndarray:
        names = face_data.dtype.names or ()
        key = "vertex_indices" if "vertex_indices" in names else "vertex_index" if "vertex_index" in names else None
        if key is None or len(face_data) == 0:
            return np.empty((0, 3), dtype=np.int64)

        tris = []
        for polygon in face_data[key]:
            polygon = np.asarray(polygon, dtype=np.int64)
            # Fan triangulation for polygons with more than three vertices
            for k in range(1, len(polygon) - 1):
                tris.append((polygon[0], polygon[k], polygon[k + 1]))
        if not tris:
            return np.empty((0, 3), dtype=np.int64)
        return np.asarray(tris, dtype=np.int64)


def read_object(file_path: Union[str, Path], reader: Optional[ObjectReader] = None) -> ScanData:
    """Read a scan with ``reader`` (default: PlyObjectReader)."""
    return (reader or PlyObjectReader()).read(file_path)
