"""
Mesh surface sampling.

Turns a reference model (a triangle mesh, or a hierarchy of mesh parts each
carrying its own world transform) into a PointCloud in world coordinates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InsufficientGeometryError, InvalidInputError
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation
from .point_cloud import PointCloud

logger = setup_logger(__name__)


@dataclass(frozen=True, eq=False)
class TriangleMesh:
    """
    A vertex buffer with optional triangle indices.

    Attributes:
        vertices: (V, 3) vertex positions in the part's local frame.
        faces: Optional (F, 3) integer vertex indices.
        world_transform: Optional 4 x 4 local-to-world transform.
    """

    vertices: np.ndarray
    faces: Optional[np.ndarray] = None
    world_transform: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        vertices = np.asarray(self.vertices, dtype=np.float64)
        if vertices.size == 0:
            vertices = vertices.reshape(0, 3)
        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise InvalidInputError(f"vertices must be (V, 3), got shape {vertices.shape}")
        if not np.all(np.isfinite(vertices)):
            raise InvalidInputError("vertices contain non-finite values")
        object.__setattr__(self, "vertices", vertices)

        if self.faces is not None:
            faces = np.asarray(self.faces, dtype=np.int64)
            if faces.size == 0:
                faces = faces.reshape(0, 3)
            if faces.ndim != 2 or faces.shape[1] != 3:
                raise InvalidInputError(f"faces must be (F, 3), got shape {faces.shape}")
            if faces.size and (faces.min() < 0 or faces.max() >= len(vertices)):
                raise InvalidInputError("faces reference vertices out of range")
            object.__setattr__(self, "faces", faces)

        if self.world_transform is not None:
            T = np.asarray(self.world_transform, dtype=np.float64)
            if T.shape != (4, 4):
                raise InvalidInputError(f"world_transform must be 4x4, got shape {T.shape}")
            object.__setattr__(self, "world_transform", T)

    def world_vertices(self) -> np.ndarray:
        if self.world_transform is None:
            return self.vertices
        return apply_transformation(self.vertices, self.world_transform)


MeshSource = Union[TriangleMesh, Sequence[TriangleMesh]]


def _as_parts(mesh: MeshSource) -> List[TriangleMesh]:
    if isinstance(mesh, TriangleMesh):
        return [mesh]
    parts = list(mesh)
    if not all(isinstance(p, TriangleMesh) for p in parts):
        raise InvalidInputError("mesh must be a TriangleMesh or a sequence of TriangleMesh parts")
    return parts


class PointCloudSampler:
    """
    Extract a PointCloud from mesh geometry.

    Methods:
    - area: area-weighted random triangle selection with uniform barycentric
      coordinates; every sample lies on the surface and carries its face normal.
      Parts without faces are skipped when other parts have triangles; a
      mesh with no faces at all falls back to vertex sampling.
    - vertices: the world-space vertex buffer, stride-downsampled to at most
      ``sample_count`` points.
    """

    def __init__(self, method: Literal["area", "vertices"] = "area", seed: Optional[int] = 0):
        if method not in ("area", "vertices"):
            raise ValueError(f"Unknown sampling method '{method}'")
        self.method = method
        self.seed = seed

    def extract(self, mesh: MeshSource, sample_count: int) -> PointCloud:
        """
        Sample ``sample_count`` points from the mesh surface in world coordinates.

        Args:
            mesh: A TriangleMesh or a sequence of mesh parts.
            sample_count: Target number of points.

        Returns:
            PointCloud in the same (world) coordinate space as the mesh.

        Raises:
            InvalidInputError: If sample_count < 1 or the mesh is malformed.
            InsufficientGeometryError: If the mesh has no extractable geometry.
        """
        if sample_count < 1:
            raise InvalidInputError(f"sample_count must be >= 1, got {sample_count}")
        parts = _as_parts(mesh)

        if self.method == "vertices":
            cloud = self._vertex_samples(parts, sample_count)
        else:
            cloud = self._surface_samples(parts, sample_count)

        if cloud.is_empty:
            raise InsufficientGeometryError("Mesh has no extractable geometry")

        lo, hi = cloud.bounds()
        logger.info(
            "Extracted %d points from %d mesh part(s) (method=%s); bounds min=%s max=%s",
            len(cloud),
            len(parts),
            self.method,
            np.round(lo, 4),
            np.round(hi, 4),
        )
        return cloud

    # ------------------------ Methods ------------------------
    def _vertex_samples(self, parts: List[TriangleMesh], sample_count: int) -> PointCloud:
        chunks = [p.world_vertices() for p in parts if len(p.vertices)]
        if not chunks:
            raise InsufficientGeometryError("Mesh has no vertices")
        points = np.vstack(chunks)
        if len(points) > sample_count:
            step = len(points) // sample_count
            points = points[::step][:sample_count]
        return PointCloud(points)

    def _surface_samples(self, parts: List[TriangleMesh], sample_count: int) -> PointCloud:
        triangles, loose = self._collect_triangles(parts)

        if len(triangles) == 0:
            if len(loose) == 0:
                raise InsufficientGeometryError("Mesh has no vertices")
            logger.debug("Mesh has no faces; falling back to vertex sampling.")
            return self._vertex_samples(parts, sample_count)

        a = triangles[:, 0]
        e1 = triangles[:, 1] - a
        e2 = triangles[:, 2] - a
        cross = np.cross(e1, e2)
        double_area = np.linalg.norm(cross, axis=1)
        total = float(double_area.sum())
        if total <= 1e-18:
            raise InsufficientGeometryError("Mesh surface has zero area")

        rng = np.random.default_rng(self.seed)
        n_surface = sample_count
        tri_idx = rng.choice(len(triangles), size=n_surface, p=double_area / total)

        # Uniform barycentric coordinates via the square-root trick
        r1 = np.sqrt(rng.random(n_surface))
        r2 = rng.random(n_surface)
        u = 1.0 - r1
        v = r1 * (1.0 - r2)
        w = r1 * r2
        points = (
            u[:, None] * triangles[tri_idx, 0]
            + v[:, None] * triangles[tri_idx, 1]
            + w[:, None] * triangles[tri_idx, 2]
        )

        safe = np.where(double_area > 0, double_area, 1.0)[:, None]
        face_normals = cross / safe
        normals = face_normals[tri_idx]

        if len(loose):
            # Vertex-only parts carry no normals and are left out of surface sampling
            logger.warning(
                "Ignoring %d vertices from mesh parts without faces during area sampling.",
                len(loose),
            )
        return PointCloud(points, normals)

    @staticmethod
    def _collect_triangles(parts: List[TriangleMesh]) -> Tuple[np.ndarray, np.ndarray]:
        tris = []
        loose = []
        for part in parts:
            verts = part.world_vertices()
            if part.faces is None or len(part.faces) == 0:
                if len(verts):
                    loose.append(verts)
                continue
            tris.append(verts[part.faces])
        triangles = np.concatenate(tris, axis=0) if tris else np.empty((0, 3, 3))
        loose_points = np.vstack(loose) if loose else np.empty((0, 3))
        return triangles, loose_points
