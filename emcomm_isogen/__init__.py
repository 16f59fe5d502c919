"""EmComm ISO Generator - custom EmComm Tools installer images.

This package resolves an EmComm Tools release, customizes an Ubuntu
installer image with station-specific configuration, runs the vendor
installer inside a chroot and repackages everything into a bootable
hybrid image.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
