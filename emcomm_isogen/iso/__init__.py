"""Base image extraction and output image rebuilding."""

from emcomm_isogen.iso.extract import ExtractedImage, extract_image, find_squashfs
from emcomm_isogen.iso.rebuild import (
    rebuild_image,
    rebuild_squashfs,
    write_md5sums,
)

__all__ = [
    "ExtractedImage",
    "extract_image",
    "find_squashfs",
    "rebuild_image",
    "rebuild_squashfs",
    "write_md5sums",
]
