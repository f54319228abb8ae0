"""pylxi - SCPI/LXI command-line client for networked instruments."""

__version__ = "1.0.0"
