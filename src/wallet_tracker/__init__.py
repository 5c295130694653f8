"""Bitcoin wallet tracker - incremental address sync and transfer detection."""

__version__ = "0.1.0"
