"""Extent, increment, spacing and origin bookkeeping under a permutation.

A reader may present the data of a file through a transform that permutes
(and possibly flips) its axes. The helpers here map extents and strides
between file space and presented space. Every function accepts ``None``
as the transform, meaning the identity.

Extents are 6-tuples ``(xmin, xmax, ymin, ymax, zmin, zmax)``.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

Extent = tuple[int, int, int, int, int, int]


class PermutationTransform:
    """A linear transform meant to permute and flip axes.

    ``matrix`` is either a 3x3 matrix or a 4x4 homogeneous matrix whose
    last column holds a translation.
    """

    def __init__(self, matrix: Sequence[Sequence[float]]) -> None:
        array = np.asarray(matrix, dtype=float)
        if array.shape == (3, 3):
            full = np.eye(4)
            full[:3, :3] = array
        elif array.shape == (4, 4):
            full = array.copy()
        else:
            raise ValueError(f"expected a 3x3 or 4x4 matrix, got shape {array.shape}")
        self.matrix = full

    def __repr__(self) -> str:
        return f"PermutationTransform({self.matrix.tolist()!r})"

    def transform_point(self, point: Sequence[float]) -> tuple[float, float, float]:
        """Apply the linear part and the translation to ``point``."""
        p = np.array([*map(float, point), 1.0])
        if p.shape != (4,):
            raise ValueError("a point needs three coordinates")
        result = self.matrix @ p
        w = result[3] if result[3] != 0 else 1.0
        return tuple(float(v / w) for v in result[:3])

    def transform_vector(self, vector: Sequence[float]) -> tuple[float, float, float]:
        """Apply the linear part only to ``vector``."""
        v = np.asarray([float(c) for c in vector])
        if v.shape != (3,):
            raise ValueError("a vector needs three coordinates")
        return tuple(float(c) for c in self.matrix[:3, :3] @ v)

    def inverse(self) -> "PermutationTransform":
        """Return the inverse transform."""
        try:
            inverted = np.linalg.inv(self.matrix)
        except np.linalg.LinAlgError:
            raise ValueError("the transform is not invertible") from None
        return PermutationTransform(inverted)


def _check_extent(extent: Sequence[int]) -> list[int]:
    values = [int(v) for v in extent]
    if len(values) != 6:
        raise ValueError("an extent needs six values")
    return values


def _sorted_pairs(values: list[int]) -> list[int]:
    for idx in range(0, 6, 2):
        if values[idx] > values[idx + 1]:
            values[idx], values[idx + 1] = values[idx + 1], values[idx]
    return values


def _map_extent(apply, extent: Sequence[int]) -> list[int]:
    low = apply((extent[0], extent[2], extent[4]))
    high = apply((extent[1], extent[3], extent[5]))
    # int() truncates toward zero, matching a C cast.
    return [int(low[0]), int(high[0]), int(low[1]), int(high[1]), int(low[2]), int(high[2])]


def _transformed_data_extent(transform: PermutationTransform, data_extent: Sequence[int]) -> list[int]:
    return _sorted_pairs(_map_extent(transform.transform_point, data_extent))


def transformed_extent(
    transform: Optional[PermutationTransform],
    in_extent: Sequence[int],
    data_extent: Sequence[int],
) -> Extent:
    """Map a file-space extent to presented space, starting at the origin."""
    in_values = _check_extent(in_extent)
    data_values = _check_extent(data_extent)
    if transform is None:
        out = list(in_values)
        shift = data_values
    else:
        shift = _transformed_data_extent(transform, data_values)
        out = _map_extent(transform.transform_point, in_values)
    out = _sorted_pairs(out)
    for idx in range(0, 6, 2):
        out[idx] -= shift[idx]
        out[idx + 1] -= shift[idx]
    return tuple(out)


def inverse_transformed_extent(
    transform: Optional[PermutationTransform],
    in_extent: Sequence[int],
    data_extent: Sequence[int],
) -> Extent:
    """Map a presented-space extent back to the file-space extent."""
    in_values = _check_extent(in_extent)
    data_values = _check_extent(data_extent)
    if transform is None:
        out = list(in_values)
        for idx in range(0, 6, 2):
            out[idx] += data_values[idx]
            out[idx + 1] += data_values[idx]
        return tuple(out)

    shift = _transformed_data_extent(transform, data_values)
    shifted = list(in_values)
    for idx in range(0, 6, 2):
        shifted[idx] += shift[idx]
        shifted[idx + 1] += shift[idx]
    out = _map_extent(transform.inverse().transform_point, shifted)
    return tuple(_sorted_pairs(out))


def _check_triple(values: Sequence[float], what: str) -> list[float]:
    result = list(values)
    if len(result) != 3:
        raise ValueError(f"{what} needs three values")
    return result


def transformed_increments(
    transform: Optional[PermutationTransform], increments: Sequence[int]
) -> tuple[int, int, int]:
    """Map file-space strides to presented space."""
    values = _check_triple(increments, "increments")
    if transform is None:
        return tuple(int(v) for v in values)
    return tuple(int(v) for v in transform.transform_vector(values))


def inverse_transformed_increments(
    transform: Optional[PermutationTransform], increments: Sequence[int]
) -> tuple[int, int, int]:
    """Map presented-space strides back to file space."""
    values = _check_triple(increments, "increments")
    if transform is None:
        return tuple(int(v) for v in values)
    return tuple(int(v) for v in transform.inverse().transform_vector(values))


def transformed_spacing(
    transform: Optional[PermutationTransform], spacing: Sequence[float]
) -> tuple[float, float, float]:
    """Return the voxel spacing in presented space; always non-negative."""
    values = _check_triple(spacing, "spacing")
    if transform is None:
        return tuple(float(v) for v in values)
    return tuple(abs(v) for v in transform.transform_vector(values))


def transformed_origin(
    transform: Optional[PermutationTransform],
    origin: Sequence[float],
    spacing: Sequence[float],
    data_extent: Sequence[int],
) -> tuple[float, float, float]:
    """Return the origin in presented space.

    Along an axis whose spacing the transform makes negative, the origin
    moves to the far end of the data.
    """
    origin_values = _check_triple(origin, "origin")
    spacing_values = _check_triple(spacing, "spacing")
    if transform is None:
        return tuple(float(v) for v in origin_values)
    moved_spacing = transform.transform_vector(spacing_values)
    moved_origin = transform.transform_point(origin_values)
    extent = transformed_extent(transform, data_extent, data_extent)
    result = []
    for axis in range(3):
        if moved_spacing[axis] < 0:
            length = extent[2 * axis + 1] - extent[2 * axis] + 1
            result.append(moved_origin[axis] + moved_spacing[axis] * length)
        else:
            result.append(moved_origin[axis])
    return tuple(result)