"""Building and re-encoding Zarr V3 array metadata, and copying array data between encodings."""

__version__ = "0.7.5"