"""Extract one z slice of a MetaImage volume as a PNG image.

Only the rows of the requested slice are read from disk. Single-component
voxels are packed into the PNG bytes unchanged: one-byte values as grey
levels, two-byte values as grey plus alpha, anything else as a 32-bit
float spread over the four RGBA channels. The scalar range of the slice
is written beside it as text.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from .metaimage import MetaImageError, MetaImageReader, parse_header

_MATRIX_KEYS = ("TransformMatrix", "Orientation", "Rotation")

# One-component PNG layout for each number of bytes packed per pixel.
_PACKED_MODES = {1: "L", 2: "LA", 4: "RGBA"}
_CHANNEL_MODES = {2: "LA", 3: "RGB", 4: "RGBA"}

# numpy (kind, itemsize) -> scalar type code
_SCALAR_CODES = {
    ("i", 1): 15,
    ("u", 1): 3,
    ("b", 1): 3,
    ("i", 2): 4,
    ("u", 2): 5,
    ("i", 4): 6,
    ("u", 4): 7,
    ("f", 4): 10,
    ("f", 8): 11,
}


def header_flip_axes(path: str | os.PathLike) -> tuple[bool, bool, bool]:
    """Which axes a MetaImage header's direction matrix reverses.

    Axis ``i`` is flipped when the ``i``-th diagonal entry of the
    ``TransformMatrix`` (or ``Orientation`` / ``Rotation``) entry is negative.
    The last such entry in the header wins.
    """
    fields = parse_header(path).fields
    flip = [False, False, False]
    for key, value in fields.items():
        if key not in _MATRIX_KEYS:
            continue
        try:
            matrix = [float(v) for v in value.split()]
        except ValueError:
            raise MetaImageError(f"{key} holds non-numeric values: {value!r}") from None
        if len(matrix) < 9:
            raise MetaImageError(f"{key} needs nine values, got {len(matrix)}")
        flip = [matrix[4 * axis] < 0 for axis in range(3)]
    return tuple(flip)


def extract_slice(path: str | os.PathLike, z: int) -> np.ndarray:
    """Read slice ``z`` of a volume, with its y axis reversed.

    The result is indexed ``[z, y, x]`` (plus a component axis for
    multi-channel voxels) and holds a single z plane.
    """
    reader = MetaImageReader(path)
    reader.z_min = z
    reader.z_max = z
    data = reader.read()
    return np.ascontiguousarray(data[:, ::-1])


def slice_components(scalar_type) -> int:
    """Number of PNG bytes per pixel used to pack a scalar of this type."""
    code = int(getattr(scalar_type, "value", scalar_type))
    if code in (2, 15, 3):
        return 1
    if code in (4, 5):
        return 2
    return 4


def _scalar_code(dtype: np.dtype) -> int:
    return _SCALAR_CODES.get((dtype.kind, dtype.itemsize), 11)


def write_slice(
    image: np.ndarray,
    png_path: str | os.PathLike,
    range_path: str | os.PathLike,
) -> tuple[float, float]:
    """Write a slice from :func:`extract_slice` as PNG and its range as text.

    Rows are written from the highest y to the lowest. Returns the scalar
    range of the first component.
    """
    data = np.asarray(image)
    if data.ndim not in (3, 4) or data.shape[0] != 1:
        raise ValueError(f"expected a single z plane, got an array of shape {data.shape}")
    plane = data[0]
    ny, nx = plane.shape[:2]
    channels = 1 if plane.ndim == 2 else plane.shape[2]
    rows = np.ascontiguousarray(plane[::-1])

    if channels > 1:
        if rows.dtype != np.uint8 or channels not in _CHANNEL_MODES:
            raise ValueError(
                f"cannot write {channels} components of type {rows.dtype} as PNG"
            )
        mode = _CHANNEL_MODES[channels]
        raw = rows.tobytes()
    else:
        packed = slice_components(_scalar_code(rows.dtype))
        if packed == 4:
            rows = rows.astype(np.float32)
        else:
            rows = rows.astype(rows.dtype.newbyteorder("="))
        mode = _PACKED_MODES[packed]
        raw = rows.tobytes()

    Image.frombytes(mode, (nx, ny), raw).save(png_path, format="PNG")

    first = plane if channels == 1 else plane[..., 0]
    low, high = float(first.min()), float(first.max())
    Path(range_path).write_text(f"{low:g} {high:g}", encoding="ascii")
    return low, high


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Write slice.png and range.txt for one slice of a volume."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("Usage : volumeOOCSlice file slice")
        return 1
    try:
        image = extract_slice(args[0], _atoi(args[1]))
        write_slice(image, "slice.png", "range.txt")
    except (MetaImageError, ValueError, OSError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())