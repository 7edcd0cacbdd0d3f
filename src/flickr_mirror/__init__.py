"""flickr-mirror - incremental Flickr backup to a local directory tree."""

__version__ = "0.1.0"
