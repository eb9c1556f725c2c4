"""Homogeneous transformation utilities for point cloud registration."""

import numpy as np


def identity(dim):
    """Identity transformation for ``dim``-dimensional points."""
    return np.eye(dim + 1)


def apply_transformation(points, transformation):
    """
    Apply a homogeneous transformation to an (N, D) point array.

    Args:
        points: Points array (N, D)
        transformation: (D+1)x(D+1) transformation matrix

    Returns:
        Transformed points (N, D)
    """
    dim = points.shape[1]
    A = transformation[:dim, :dim]
    t = transformation[:dim, dim]
    return points @ A.T + t


def transform_normals(normals, transformation):
    """
    Map normal vectors through the linear block of ``transformation``.

    Normals follow the inverse transpose of the linear block, which equals
    the block itself for a rotation. Results are re-normalised; zero-length
    normals stay zero.
    """
    dim = normals.shape[1]
    A = transformation[:dim, :dim]
    if is_rigid(transformation):
        out = normals @ A.T
    else:
        out = normals @ np.linalg.inv(A)
    norms = np.linalg.norm(out, axis=1, keepdims=True)
    return np.divide(out, norms, out=np.zeros_like(out), where=norms > 0)


def translation(offset):
    """Pure translation matrix for an offset vector."""
    offset = np.asarray(offset, dtype=float)
    T = identity(offset.shape[0])
    T[:-1, -1] = offset
    return T


def rotation_2d(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s], [s, c]])


def rotation_from_rotvec(rotvec):
    """Rodrigues' formula: rotation matrix from an axis-angle vector."""
    rotvec = np.asarray(rotvec, dtype=float)
    angle = np.linalg.norm(rotvec)
    if angle < 1e-15:
        return np.eye(3)
    k = rotvec / angle
    K = np.array([
        [0, -k[2], k[1]],
        [k[2], 0, -k[0]],
        [-k[1], k[0], 0]
    ])
    return np.eye(3) + np.sin(angle) * K + (1 - np.cos(angle)) * K @ K


def make_transformation(R, t):
    """Build a homogeneous matrix from a linear block and a translation."""
    dim = R.shape[0]
    T = identity(dim)
    T[:dim, :dim] = R
    T[:dim, dim] = t
    return T


def rotation_angle(transformation):
    """Rotation angle in radians of the linear block (scale removed)."""
    dim = transformation.shape[0] - 1
    R = transformation[:dim, :dim]
    scale = abs(np.linalg.det(R)) ** (1.0 / dim)
    if scale > 0:
        R = R / scale
    if dim == 2:
        return abs(np.arctan2(R[1, 0], R[0, 0]))
    cos_angle = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.arccos(cos_angle))


def is_rigid(transformation, atol=1e-6):
    """True when the linear block is a proper rotation within ``atol``."""
    dim = transformation.shape[0] - 1
    R = transformation[:dim, :dim]
    return (np.allclose(R @ R.T, np.eye(dim), atol=atol)
            and np.isclose(np.linalg.det(R), 1.0, atol=atol))


def orthonormalize(transformation):
    """
    Project the linear block onto the closest proper rotation.

    Repeated composition of incremental estimates accumulates rounding
    error; this keeps a rigid estimate rigid.
    """
    dim = transformation.shape[0] - 1
    U, _, Vt = np.linalg.svd(transformation[:dim, :dim])
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt
    out = transformation.copy()
    out[:dim, :dim] = R
    out[dim, :] = 0.0
    out[dim, dim] = 1.0
    return out


def validate_transformation(transformation, dim):
    """Return ``transformation`` as a float array after checking its shape."""
    transformation = np.asarray(transformation, dtype=float)
    if transformation.shape != (dim + 1, dim + 1):
        raise ValueError(
            f"Expected a {dim + 1}x{dim + 1} transformation, "
            f"got shape {transformation.shape}"
        )
    if not np.all(np.isfinite(transformation)):
        raise ValueError("Transformation contains non-finite values")
    return transformation
