"""Label cleaning, MetaImage region reading, slice extraction and uniform clustering for volumes."""

__version__ = "1.0.0"
__all__ = [
    "tag",
    "mhd_header",
    "cleanlabels",
    "partition",
    "clustering",
    "extent",
    "metaimage",
    "oocslice",
]