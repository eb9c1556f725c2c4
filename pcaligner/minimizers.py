"""Error minimizers: solve for the transformation update of one ICP iteration."""

import numpy as np

from .errors import InsufficientDataError, NumericalInstabilityError
from .transforms import (apply_transformation, identity, make_transformation,
                         rotation_2d, rotation_from_rotvec)
from .utils import map_chunks


class ErrorElements:
    """
    The correspondences of one iteration that carry a positive weight,
    flattened to aligned arrays.
    """

    def __init__(self, reading, reference, matches):
        reading_ids, reference_ids, _, weights = matches.pairs()
        keep = weights > 0
        self.reading = reading.points[reading_ids[keep]]
        self.reference = reference.points[reference_ids[keep]]
        self.reference_ids = reference_ids[keep]
        self.weights = weights[keep]
        normals = reference.features.get('normals')
        self.normals = None if normals is None else normals[self.reference_ids]

    def __len__(self):
        return self.weights.shape[0]

    @property
    def dim(self):
        return self.reading.shape[1]


def _reduce(partials):
    """Sum per-chunk partial results in chunk order."""
    total = partials[0]
    for partial in partials[1:]:
        total = tuple(a + b for a, b in zip(total, partial))
    return total


class ErrorMinimizer:
    """
    Base class of the error minimizers.

    :meth:`compute` returns the incremental transformation that moves the
    (already transformed) reading onto the reference, and the residual
    error after applying it: the weighted mean of squared errors.
    """

    name = None
    rigid = True

    def __init__(self, n_jobs=1):
        self.n_jobs = n_jobs

    def compute(self, reading, reference, matches):
        elements = ErrorElements(reading, reference, matches)
        if len(elements) < reading.dim:
            raise InsufficientDataError(
                f"{len(elements)} valid correspondences, at least {reading.dim} required"
            )
        transformation = self._solve(elements)
        if not np.all(np.isfinite(transformation)):
            raise NumericalInstabilityError(f"'{self.name}' produced a non-finite transformation")
        return transformation, self._residual(elements, transformation)

    def _solve(self, elements):
        raise NotImplementedError

    def _squared_errors(self, elements, chunk, transformation):
        moved = apply_transformation(elements.reading[chunk], transformation)
        return np.sum((moved - elements.reference[chunk]) ** 2, axis=1)

    def _residual(self, elements, transformation):
        def accumulate(chunk):
            errors = self._squared_errors(elements, chunk, transformation)
            return (np.dot(elements.weights[chunk], errors), np.sum(elements.weights[chunk]))

        error_sum, weight_sum = _reduce(map_chunks(accumulate, len(elements), self.n_jobs))
        return float(error_sum / weight_sum)


class IdentityErrorMinimizer(ErrorMinimizer):
    """Never moves the reading; useful to measure the initial alignment."""

    name = 'identity'

    def _solve(self, elements):
        return identity(elements.dim)


class PointToPointErrorMinimizer(ErrorMinimizer):
    """
    Weighted least-squares rigid alignment of matched point pairs (SVD).

    The cross-covariance is accumulated per chunk from uncentered sums,
    then centered once all chunks are combined.
    """

    name = 'point_to_point'

    def __init__(self, n_jobs=1, max_condition=1e12):
        super().__init__(n_jobs=n_jobs)
        if max_condition <= 1:
            raise ValueError("max_condition must be greater than 1")
        self.max_condition = float(max_condition)

    def _moments(self, elements):
        def accumulate(chunk):
            w = elements.weights[chunk]
            p = elements.reading[chunk]
            q = elements.reference[chunk]
            wp = p * w[:, np.newaxis]
            return (np.sum(w), np.sum(wp, axis=0), q.T @ w,
                    wp.T @ q, np.sum(wp * p))

        weight_sum, p_sum, q_sum, pq_sum, pp_sum = _reduce(
            map_chunks(accumulate, len(elements), self.n_jobs)
        )
        source_centroid = p_sum / weight_sum
        target_centroid = q_sum / weight_sum
        H = pq_sum - weight_sum * np.outer(source_centroid, target_centroid)
        source_variance = pp_sum - weight_sum * source_centroid @ source_centroid
        return weight_sum, source_centroid, target_centroid, H, source_variance

    def _rotation(self, H):
        U, S, Vt = np.linalg.svd(H)
        dim = H.shape[0]
        # A rank of at least D-1 pins down the rotation
        if S[0] <= 0 or S[dim - 2] * self.max_condition < S[0]:
            raise NumericalInstabilityError(
                "Correspondences are degenerate, rotation is not determined"
            )
        # Handle reflection case
        D = np.eye(dim)
        if np.linalg.det(Vt.T @ U.T) < 0:
            D[-1, -1] = -1
        return Vt.T @ D @ U.T, S, D

    def _solve(self, elements):
        _, source_centroid, target_centroid, H, _ = self._moments(elements)
        R, _, _ = self._rotation(H)
        t = target_centroid - R @ source_centroid
        return make_transformation(R, t)


class PointToPointSimilarityErrorMinimizer(PointToPointErrorMinimizer):
    """Point-to-point alignment with an additional uniform scale (Umeyama)."""

    name = 'similarity'
    rigid = False

    def _solve(self, elements):
        _, source_centroid, target_centroid, H, source_variance = self._moments(elements)
        R, S, D = self._rotation(H)
        if source_variance <= 0:
            raise NumericalInstabilityError("Reading points have no spread, scale is undefined")
        scale = np.trace(np.diag(S) @ D) / source_variance
        t = target_centroid - scale * R @ source_centroid
        return make_transformation(scale * R, t)


class PointToPlaneErrorMinimizer(ErrorMinimizer):
    """
    Minimizes the distance from reading points to the tangent planes of
    their reference matches.

    Small-angle linearization: the unknowns are a rotation vector (one
    angle in 2D) and a translation, solved from the weighted normal
    equations. The rotation is rebuilt exactly from the solved angles.
    """

    name = 'point_to_plane'

    def __init__(self, n_jobs=1, max_condition=1e12):
        super().__init__(n_jobs=n_jobs)
        if max_condition <= 1:
            raise ValueError("max_condition must be greater than 1")
        self.max_condition = float(max_condition)

    def compute(self, reading, reference, matches):
        reference.get_feature('normals')
        return super().compute(reading, reference, matches)

    def _system(self, elements, chunk):
        p = elements.reading[chunk]
        q = elements.reference[chunk]
        n = elements.normals[chunk]
        if elements.dim == 3:
            rotational = np.cross(p, n)
        else:
            rotational = (p[:, 0] * n[:, 1] - p[:, 1] * n[:, 0])[:, np.newaxis]
        A = np.hstack([rotational, n])
        b = np.sum(n * (q - p), axis=1)
        return A, b

    def _solve(self, elements):
        def accumulate(chunk):
            A, b = self._system(elements, chunk)
            wA = A * elements.weights[chunk][:, np.newaxis]
            return (wA.T @ A, wA.T @ b)

        AtA, Atb = _reduce(map_chunks(accumulate, len(elements), self.n_jobs))
        if np.linalg.cond(AtA) > self.max_condition:
            raise NumericalInstabilityError(
                "Point-to-plane normal equations are ill-conditioned"
            )
        params = np.linalg.solve(AtA, Atb)

        dim = elements.dim
        if dim == 3:
            R = rotation_from_rotvec(params[:3])
            t = params[3:]
        else:
            R = rotation_2d(params[0])
            t = params[1:]
        return make_transformation(R, t)

    def _squared_errors(self, elements, chunk, transformation):
        moved = apply_transformation(elements.reading[chunk], transformation)
        n = elements.normals[chunk]
        return np.sum(n * (moved - elements.reference[chunk]), axis=1) ** 2


ERROR_MINIMIZERS = {
    cls.name: cls for cls in (
        IdentityErrorMinimizer,
        PointToPointErrorMinimizer,
        PointToPointSimilarityErrorMinimizer,
        PointToPlaneErrorMinimizer,
    )
}
