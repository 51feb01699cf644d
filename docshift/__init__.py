"""docshift: HTTP API for merging, splitting and converting documents."""

__version__ = "0.1.0"
