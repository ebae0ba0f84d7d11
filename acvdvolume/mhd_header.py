"""Writing of MetaImage (.mhd) header files."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import IntEnum

logger = logging.getLogger(__name__)


class ScalarType(IntEnum):
    """Voxel scalar type codes."""

    CHAR = 2
    UNSIGNED_CHAR = 3
    SHORT = 4
    UNSIGNED_SHORT = 5
    INT = 6
    UNSIGNED_INT = 7
    LONG = 8
    UNSIGNED_LONG = 9
    FLOAT = 10
    DOUBLE = 11
    SIGNED_CHAR = 15


_ELEMENT_TYPES = {
    ScalarType.SIGNED_CHAR: "MET_CHAR",
    ScalarType.UNSIGNED_CHAR: "MET_UCHAR",
    ScalarType.SHORT: "MET_SHORT",
    ScalarType.UNSIGNED_SHORT: "MET_USHORT",
    ScalarType.INT: "MET_INT",
    ScalarType.UNSIGNED_INT: "MET_UINT",
    ScalarType.LONG: "MET_LONG",
    ScalarType.UNSIGNED_LONG: "MET_ULONG",
    ScalarType.FLOAT: "MET_FLOAT",
    ScalarType.DOUBLE: "MET_DOUBLE",
}

_FLAGS = {True: "TRUE", False: "FALSE"}


def element_type_name(scalar_type: int) -> str:
    """Return the MetaImage element type name for a scalar type code."""
    try:
        return _ELEMENT_TYPES[ScalarType(scalar_type)]
    except (KeyError, ValueError):
        raise ValueError(f"no MetaImage element type for scalar type {scalar_type!r}") from None


def _number(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    return f"{value:.6g}"


def _triple(values) -> str:
    return " ".join(_number(v) for v in values)


@dataclass
class MHDHeader:
    """The fields of a MetaImage header."""

    object_type: str = "Image"
    n_dimensions: int = 0
    dimensions: tuple[int, int, int] = (0, 0, 0)
    element_type: ScalarType = ScalarType.UNSIGNED_CHAR
    header_size: int = 0
    number_of_channels: int = 0
    element_spacing: tuple[float, float, float] = (1.0, 1.0, 1.0)
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    offset: tuple[float, float, float] = (0.0, 0.0, 0.0)
    center_of_rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    binary_data: bool = True
    byte_order_msb: bool = False
    compressed_data: bool = False
    element_data_file: str = ""

    def render(self) -> str:
        """Return the header text; the last line has no line break."""
        lines = [
            f"ObjectType = {self.object_type}",
            f"NDims = {self.n_dimensions}",
            f"DimSize = {_triple(self.dimensions)}",
            f"ElementType = {element_type_name(self.element_type)}",
            f"HeaderSize = {self.header_size}",
            f"ElementNumberOfChannels = {self.number_of_channels}",
            f"ElementSpacing = {_triple(self.element_spacing)}",
            f"Position = {_triple(self.position)}",
            f"Offset = {_triple(self.offset)}",
            f"CenterOfRotation = {_triple(self.center_of_rotation)}",
            f"BinaryData = {_FLAGS[bool(self.binary_data)]}",
            f"BinaryDataByteOrderMSB = {_FLAGS[bool(self.byte_order_msb)]}",
            f"CompressedData = {_FLAGS[bool(self.compressed_data)]}",
            f"ElementDataFile = {self.element_data_file}",
        ]
        return "\n".join(lines)

    def write(self, path: str | os.PathLike) -> None:
        """Write the header to ``path``."""
        text = self.render()
        logger.debug("writing header %s for data file %s", path, self.element_data_file)
        with open(path, "w", encoding="ascii", newline="\n") as handle:
            handle.write(text)