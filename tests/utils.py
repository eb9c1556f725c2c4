"""Synthetic clouds and transformations shared by the tests."""

import numpy as np

from pcaligner import Matches
from pcaligner.transforms import make_transformation, rotation_from_rotvec


def rot_z(angle_rad):
    return rotation_from_rotvec([0.0, 0.0, angle_rad])


def rigid(R, t):
    return make_transformation(np.asarray(R, dtype=float), np.asarray(t, dtype=float))


def grid_2d(n=10, spacing=5.0):
    xs, ys = np.meshgrid(np.arange(n) * spacing, np.arange(n) * spacing)
    return np.column_stack([xs.ravel(), ys.ravel()])


def box_surface(size=(2.0, 3.0, 1.5), step=0.25):
    """
    Points sampled on the six faces of an axis-aligned box centered at the
    origin, with exact outward normals. Samples sit half a step inside each
    face so that no point lies on an edge.
    """
    half = np.asarray(size) / 2.0
    points = []
    normals = []
    for axis in range(3):
        u, v = [a for a in range(3) if a != axis]
        us = np.arange(-half[u] + step / 2, half[u], step)
        vs = np.arange(-half[v] + step / 2, half[v], step)
        uu, vv = np.meshgrid(us, vs)
        for sign in (-1.0, 1.0):
            face = np.zeros((uu.size, 3))
            face[:, u] = uu.ravel()
            face[:, v] = vv.ravel()
            face[:, axis] = sign * half[axis]
            normal = np.zeros(3)
            normal[axis] = sign
            points.append(face)
            normals.append(np.tile(normal, (uu.size, 1)))
    return np.vstack(points), np.vstack(normals)


def identity_matches(n, distances=None, weights=None):
    """Correspondences pairing reading point i with reference point i."""
    ids = np.arange(n)[:, np.newaxis]
    if distances is None:
        distances = np.zeros((n, 1))
    return Matches(ids, np.asarray(distances, dtype=float).reshape(n, -1), weights)
