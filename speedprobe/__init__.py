"""speedprobe: concurrent network probing for speed tests and LAN discovery."""

__version__ = "0.1.0"
