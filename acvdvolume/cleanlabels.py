"""Keep only the largest connected component of each label in a volume.

Volumes are numpy arrays indexed ``[z, y, x]``; 1-D and 2-D arrays are
treated as volumes with leading dimensions of size one. Connectivity is
6-neighbourhood. Every smaller component of a label is relabelled with
the neighbouring label it shares the most boundary faces with.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class LabelComponent:
    """One connected region of voxels sharing a label."""

    label: Any
    seed: tuple[int, int, int]
    size: int
    neighbours: dict[Any, int] = field(default_factory=dict)
    new_label: Any = None

    @property
    def paint_label(self) -> Any:
        """The label this component receives in the cleaned volume."""
        return self.label if self.new_label is None else self.new_label


def _as_volume(volume) -> np.ndarray:
    arr = np.asarray(volume)
    if arr.ndim > 3:
        raise ValueError(f"expected at most 3 dimensions, got {arr.ndim}")
    if arr.size == 0:
        raise ValueError("volume is empty")
    return arr.reshape((1,) * (3 - arr.ndim) + arr.shape)


def _label_components(arr: np.ndarray) -> tuple[list[LabelComponent], list[int]]:
    nz, ny, nx = arr.shape
    line = nx
    plane = nx * ny
    flat = arr.ravel().tolist()
    owner = [-1] * len(flat)
    components: list[LabelComponent] = []

    for start, label in enumerate(flat):
        if owner[start] != -1:
            continue
        cid = len(components)
        neighbours: dict[Any, int] = {}
        size = 0
        queue = deque([start])
        while queue:
            p = queue.popleft()
            if owner[p] != -1 or flat[p] != label:
                continue
            owner[p] = cid
            size += 1
            z, rest = divmod(p, plane)
            y, x = divmod(rest, line)
            for q, inside in (
                (p - 1, x > 0),
                (p + 1, x < nx - 1),
                (p - line, y > 0),
                (p + line, y < ny - 1),
                (p - plane, z > 0),
                (p + plane, z < nz - 1),
            ):
                if not inside:
                    continue
                other = flat[q]
                if other == label:
                    if owner[q] == -1:
                        queue.append(q)
                else:
                    neighbours[other] = neighbours.get(other, 0) + 1
        z, rest = divmod(start, plane)
        y, x = divmod(rest, line)
        components.append(
            LabelComponent(
                label=label,
                seed=(z, y, x),
                size=size,
                neighbours=dict(sorted(neighbours.items())),
            )
        )

    logger.info("number of components: %d", len(components))
    return components, owner


def find_components(volume) -> list[LabelComponent]:
    """Return the connected components of ``volume`` in scan order."""
    components, _ = _label_components(_as_volume(volume))
    return components


def _mark_relabelled(components: list[LabelComponent]) -> None:
    by_label: dict[Any, list[int]] = {}
    for index, component in enumerate(components):
        by_label.setdefault(component.label, []).append(index)

    for label in sorted(by_label):
        members = by_label[label]
        if len(members) < 2:
            continue
        logger.info("label %s has %d components", label, len(members))
        biggest, max_size = members[0], 0
        for index in members:
            if components[index].size > max_size:
                biggest, max_size = index, components[index].size
        for index in members:
            if index == biggest:
                continue
            component = components[index]
            best_label, best_count = 0, -1
            for neighbour_label, count in component.neighbours.items():
                if count > best_count:
                    best_label, best_count = neighbour_label, count
            component.new_label = best_label


def clean_labels(volume) -> np.ndarray:
    """Return a copy of ``volume`` where each label keeps one component."""
    original = np.asarray(volume)
    arr = _as_volume(original)
    components, owner = _label_components(arr)
    _mark_relabelled(components)
    removed = sum(1 for c in components if c.new_label is not None)
    logger.info("%d component(s) relabelled", removed)
    paint = [component.paint_label for component in components]
    result = np.array([paint[cid] for cid in owner], dtype=arr.dtype)
    return result.reshape(original.shape)