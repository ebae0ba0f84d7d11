"""Region-by-region reading of MetaImage (.mhd / .mha) volumes.

Only the rows needed for the requested region are read from the data
file, so a single slice can be extracted from a volume that does not fit
in memory. Arrays are returned indexed ``[z, y, x]``, with a trailing
component axis when voxels have more than one channel.
"""

from __future__ import annotations

import logging
import math
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from .extent import (
    Extent,
    PermutationTransform,
    inverse_transformed_extent,
    inverse_transformed_increments,
    transformed_extent,
)
from .mhd_header import ScalarType

logger = logging.getLogger(__name__)


class MetaImageError(Exception):
    """Raised when a MetaImage file cannot be parsed or read."""


# element type name -> (scalar type, numpy type code, size in bytes)
_ELEMENT_TYPES: dict[str, tuple[ScalarType, str, int]] = {
    "MET_CHAR": (ScalarType.SIGNED_CHAR, "i1", 1),
    "MET_CHAR_ARRAY": (ScalarType.SIGNED_CHAR, "i1", 1),
    "MET_UCHAR": (ScalarType.UNSIGNED_CHAR, "u1", 1),
    "MET_UCHAR_ARRAY": (ScalarType.UNSIGNED_CHAR, "u1", 1),
    "MET_SHORT": (ScalarType.SHORT, "i2", 2),
    "MET_SHORT_ARRAY": (ScalarType.SHORT, "i2", 2),
    "MET_USHORT": (ScalarType.UNSIGNED_SHORT, "u2", 2),
    "MET_USHORT_ARRAY": (ScalarType.UNSIGNED_SHORT, "u2", 2),
    "MET_INT": (ScalarType.INT, "i4", 4),
    "MET_INT_ARRAY": (ScalarType.INT, "i4", 4),
    "MET_UINT": (ScalarType.UNSIGNED_INT, "u4", 4),
    "MET_UINT_ARRAY": (ScalarType.UNSIGNED_INT, "u4", 4),
    "MET_LONG": (ScalarType.LONG, "i4", 4),
    "MET_LONG_ARRAY": (ScalarType.LONG, "i4", 4),
    "MET_ULONG": (ScalarType.UNSIGNED_LONG, "u4", 4),
    "MET_ULONG_ARRAY": (ScalarType.UNSIGNED_LONG, "u4", 4),
    "MET_FLOAT": (ScalarType.FLOAT, "f4", 4),
    "MET_DOUBLE": (ScalarType.DOUBLE, "f8", 8),
}

_DISTANCE_UNITS = {"mm": "mm", "cm": "cm"}

_MODALITIES = {"MET_MOD_CT": "CT", "MET_MOD_MR": "MR"}

_FIRST_KEYS = frozenset(
    {
        "NDims",
        "ObjectType",
        "TransformType",
        "ID",
        "ParentID",
        "BinaryData",
        "Comment",
        "AcquisitionDate",
        "Modality",
    }
)


@dataclass
class MetaImageHeader:
    """What a MetaImage header says about its data."""

    path: Path
    n_dims: int
    dim_size: tuple[int, ...]
    element_type: str
    scalar_type: ScalarType
    type_code: str
    element_size: int
    channels: int
    spacing: tuple[float, ...]
    position: tuple[float, ...]
    header_size: int
    byte_order_msb: bool
    compressed: bool
    data_file: Path
    data_offset: int
    distance_units: str
    anatomical_orientation: str
    rescale_slope: float
    rescale_offset: float
    modality: str
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def data_size(self) -> int:
        """Number of bytes of voxel data."""
        return math.prod(self.dim_size) * self.channels * self.element_size

    @property
    def file_dtype(self) -> np.dtype:
        """The numpy type of one stored value, with the file's byte order."""
        return np.dtype(self.type_code).newbyteorder(">" if self.byte_order_msb else "<")


def _flag(value: str) -> bool:
    return value[:1] in ("T", "t", "1")


def _numbers(value: str, key: str) -> list[float]:
    try:
        return [float(v) for v in value.split()]
    except ValueError:
        raise MetaImageError(f"{key} holds non-numeric values: {value!r}") from None


def _read_fields(path: Path) -> tuple[dict[str, str], int]:
    fields: dict[str, str] = {}
    try:
        with open(path, "rb") as handle:
            while True:
                raw = handle.readline()
                if not raw:
                    raise MetaImageError(f"{path}: no ElementDataFile entry")
                line = raw.decode("latin-1").strip()
                if not line:
                    continue
                key, sep, value = line.partition("=")
                if not sep:
                    raise MetaImageError(f"{path}: cannot parse line {line!r}")
                key = key.strip()
                fields[key] = value.strip()
                if key == "ElementDataFile":
                    return fields, handle.tell()
    except OSError as exc:
        raise MetaImageError(f"cannot open {path}: {exc}") from exc


def parse_header(path: str | os.PathLike) -> MetaImageHeader:
    """Parse the header of a MetaImage file."""
    path = Path(path)
    fields, local_end = _read_fields(path)

    if "NDims" not in fields:
        raise MetaImageError(f"{path}: no NDims entry")
    try:
        n_dims = int(fields["NDims"])
    except ValueError:
        raise MetaImageError(f"{path}: bad NDims {fields['NDims']!r}") from None
    if not 1 <= n_dims <= 3:
        raise MetaImageError(
            f"only images of 1, 2 and 3 dimensions are understood; "
            f"this image has {n_dims} dimensions"
        )

    if "DimSize" not in fields:
        raise MetaImageError(f"{path}: no DimSize entry")
    dims = [int(v) for v in _numbers(fields["DimSize"], "DimSize")]
    if len(dims) < n_dims or any(d < 1 for d in dims[:n_dims]):
        raise MetaImageError(f"{path}: bad DimSize {fields['DimSize']!r}")
    dim_size = tuple(dims[:n_dims])

    element_type = fields.get("ElementType", "")
    if element_type not in _ELEMENT_TYPES:
        raise MetaImageError(f"unknown data type: {element_type!r}")
    scalar_type, type_code, element_size = _ELEMENT_TYPES[element_type]

    spacing_key = "ElementSpacing" if "ElementSpacing" in fields else "ElementSize"
    spacing = _numbers(fields.get(spacing_key, ""), spacing_key) or [1.0] * n_dims
    spacing = (spacing + [1.0] * n_dims)[:n_dims]

    position: list[float] = []
    for key in ("Position", "Origin", "Offset"):
        if key in fields:
            position = _numbers(fields[key], key)
            break
    position = (position + [0.0] * n_dims)[:n_dims]

    channels = int(fields.get("ElementNumberOfChannels", "1"))
    if channels < 1:
        raise MetaImageError(f"{path}: bad number of channels {channels}")
    header_size = int(fields.get("HeaderSize", "0"))
    msb_value = fields.get("BinaryDataByteOrderMSB", fields.get("ElementByteOrderMSB", "False"))
    compressed = _flag(fields.get("CompressedData", "False"))

    data_name = fields["ElementDataFile"]
    if data_name == "LIST" or "%" in data_name or " " in data_name:
        raise MetaImageError(f"{path}: data file lists are not supported: {data_name!r}")
    local = data_name == "LOCAL"
    if local:
        data_file = path
    else:
        data_file = Path(data_name)
        if not data_file.is_absolute():
            data_file = path.parent / data_file

    data_size = math.prod(dim_size) * channels * element_size
    if header_size == -1:
        try:
            data_offset = data_file.stat().st_size - data_size
        except OSError as exc:
            raise MetaImageError(f"cannot open {data_file}: {exc}") from exc
        if data_offset < 0:
            raise MetaImageError(f"{data_file} is smaller than the image data")
    elif local:
        data_offset = local_end + max(header_size, 0)
    else:
        data_offset = max(header_size, 0)

    units = _DISTANCE_UNITS.get(fields.get("DistanceUnits", "").lower(), "um")

    return MetaImageHeader(
        path=path,
        n_dims=n_dims,
        dim_size=dim_size,
        element_type=element_type,
        scalar_type=scalar_type,
        type_code=type_code,
        element_size=element_size,
        channels=channels,
        spacing=tuple(spacing),
        position=tuple(position),
        header_size=header_size,
        byte_order_msb=_flag(msb_value),
        compressed=compressed,
        data_file=data_file,
        data_offset=data_offset,
        distance_units=units,
        anatomical_orientation=fields.get("AnatomicalOrientation", "???"),
        rescale_slope=float(fields.get("ElementToIntensityFunctionSlope", "1")),
        rescale_offset=float(fields.get("ElementToIntensityFunctionOffset", "0")),
        modality=_MODALITIES.get(fields.get("Modality", ""), "?"),
        fields=fields,
    )


def can_read_file(path: str | os.PathLike) -> bool:
    """Whether ``path`` looks like a MetaImage header by name and first key."""
    name = os.fspath(path)
    if not name or not (name.endswith(".mha") or name.endswith(".mhd")):
        return False
    try:
        with open(name, "rb") as handle:
            content = handle.read(8000)
    except OSError:
        return False
    text = content.decode("latin-1")
    stripped = text.lstrip()
    tokens = stripped.split(None, 1)
    if not tokens:
        return False
    key = tokens[0]
    # A key that ends the file is not enough to identify it.
    if len(stripped) == len(key):
        return False
    return key in _FIRST_KEYS


class MetaImageReader:
    """Reads a region of interest of a MetaImage volume.

    The region is the whole data unless ``data_voi`` or the per-axis
    bounds ``x_min`` .. ``z_max`` restrict it; a bound left at ``None``
    keeps its default. An optional ``transform`` permutes the axes of the
    returned array. ``data_mask`` masks every value unless it is 0xffff.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.file_name = Path(path)
        self.x_min: Optional[int] = None
        self.x_max: Optional[int] = None
        self.y_min: Optional[int] = None
        self.y_max: Optional[int] = None
        self.z_min: Optional[int] = None
        self.z_max: Optional[int] = None
        self.data_voi: Optional[Sequence[Optional[int]]] = None
        self.transform: Optional[PermutationTransform] = None
        self.scalar_array_name = "MetaImage"
        self.file_lower_left = True
        self.header: Optional[MetaImageHeader] = None
        self.data_extent: Extent = (0, 0, 0, 0, 0, 0)
        self.data_spacing: tuple[float, float, float] = (1.0, 1.0, 1.0)
        self.data_origin: tuple[float, float, float] = (0.0, 0.0, 0.0)
        self._data_mask = 0xFFFF

    @property
    def data_mask(self) -> int:
        return self._data_mask

    @data_mask.setter
    def data_mask(self, value: int) -> None:
        self._data_mask = int(value) & 0xFFFF

    def read_information(self) -> MetaImageHeader:
        """Parse the header once and set up extent, spacing and origin."""
        if self.header is not None:
            return self.header
        header = parse_header(self.file_name)
        extent = [0, 0, 0, 0, 0, 0]
        spacing = [1.0, 1.0, 1.0]
        origin = [0.0, 0.0, 0.0]
        for axis in range(header.n_dims):
            extent[2 * axis + 1] = header.dim_size[axis] - 1
            spacing[axis] = abs(header.spacing[axis])
            origin[axis] = header.position[axis]
        self.data_extent = tuple(extent)
        self.data_spacing = tuple(spacing)
        self.data_origin = tuple(origin)
        self.file_lower_left = True
        self.header = header
        return header

    def _voi(self) -> list[int]:
        voi = list(self.data_extent)
        if self.data_voi is not None:
            values = list(self.data_voi)
            if len(values) != 6:
                raise ValueError("data_voi needs six values")
            for idx, value in enumerate(values):
                if value is not None:
                    voi[idx] = int(value)
        bounds = (self.x_min, self.x_max, self.y_min, self.y_max, self.z_min, self.z_max)
        for idx, value in enumerate(bounds):
            if value is not None:
                voi[idx] = int(value)
        return voi

    def whole_extent(self) -> Extent:
        """The extent of the array that ``read`` returns."""
        self.read_information()
        return transformed_extent(self.transform, self._voi(), self.data_extent)

    def read(self) -> np.ndarray:
        """Read the region of interest from the data file."""
        header = self.read_information()
        if header.compressed:
            raise MetaImageError("compressed data cannot be read region by region")
        out_extent = self.whole_extent()
        file_extent = inverse_transformed_extent(self.transform, out_extent, self.data_extent)
        for idx in range(0, 6, 2):
            low, high = file_extent[idx], file_extent[idx + 1]
            if low < self.data_extent[idx] or high > self.data_extent[idx + 1] or low > high:
                raise ValueError(
                    f"region {file_extent} lies outside the data extent {self.data_extent}"
                )

        channels = header.channels
        nx_o, ny_o, nz_o = (out_extent[2 * a + 1] - out_extent[2 * a] + 1 for a in range(3))
        out_increments = (channels, channels * nx_o, channels * nx_o * ny_o)
        step = inverse_transformed_increments(self.transform, out_increments)

        block = self._read_block(header, file_extent)
        native = np.dtype(header.type_code)
        if self._data_mask != 0xFFFF:
            masked = block.astype(np.int16).astype(np.int32) & self._data_mask
            block = masked.astype(native)
        else:
            block = block.astype(native)

        dz, dy, dx = block.shape[:3]
        base = 0
        for increment, length in zip(step, (dx, dy, dz)):
            if increment < 0:
                base -= increment * (length - 1)
        index = (
            base
            + np.arange(dz)[:, None, None] * step[2]
            + np.arange(dy)[None, :, None] * step[1]
            + np.arange(dx)[None, None, :] * step[0]
        )
        index = index[..., None] + np.arange(channels)
        output = np.zeros(nx_o * ny_o * nz_o * channels, dtype=native)
        output[index] = block
        if channels == 1:
            return output.reshape(nz_o, ny_o, nx_o)
        return output.reshape(nz_o, ny_o, nx_o, channels)

    def _read_block(self, header: MetaImageHeader, extent: Extent) -> np.ndarray:
        channels = header.channels
        dtype = header.file_dtype
        data = self.data_extent
        inc0 = header.element_size * channels
        inc1 = inc0 * (data[1] - data[0] + 1)
        inc2 = inc1 * (data[3] - data[2] + 1)
        pixels = extent[1] - extent[0] + 1
        row_bytes = pixels * inc0
        rows = []
        try:
            handle = open(header.data_file, "rb")
        except OSError as exc:
            raise MetaImageError(f"cannot open {header.data_file}: {exc}") from exc
        with handle:
            for z in range(extent[4], extent[5] + 1):
                for y in range(extent[2], extent[3] + 1):
                    if self.file_lower_left:
                        row = y - data[2]
                    else:
                        row = data[3] - data[2] - y
                    position = (
                        header.data_offset
                        + (extent[0] - data[0]) * inc0
                        + row * inc1
                        + (z - data[4]) * inc2
                    )
                    handle.seek(position)
                    chunk = handle.read(row_bytes)
                    if len(chunk) != row_bytes:
                        raise MetaImageError(
                            f"file operation failed: row {y}, tried to read "
                            f"{row_bytes} bytes, read {len(chunk)}"
                        )
                    rows.append(np.frombuffer(chunk, dtype=dtype))
        nz = extent[5] - extent[4] + 1
        ny = extent[3] - extent[2] + 1
        block = np.concatenate(rows).reshape(nz, ny, pixels, channels)
        logger.debug("read extent %s from %s", extent, header.data_file)
        if dtype.byteorder not in ("=", "|") and dtype.byteorder != (
            "<" if sys.byteorder == "little" else ">"
        ):
            block = block.astype(dtype.newbyteorder("="))
        return block