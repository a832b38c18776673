"""QEMU based NAS/RAID teaching sandbox."""

__version__ = "0.1.0"
