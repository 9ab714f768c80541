"""Incremental snapshots of a CouchDB/Cloudant changes feed."""

__version__ = "0.1.0"
