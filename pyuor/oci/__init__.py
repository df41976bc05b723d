"""OCI types and registry client

This module provides a Python API for the subset of the OCI image and
distribution specs that collections are built from.
"""
from .client import Client
from .config import EmptyConfig
from .descriptor import Descriptor, MediaKind, compute_digest, media_kind
from .layer import Blob, Layer
from .manifest import Index, Manifest, parse_index, parse_manifest
from .reference import Reference

__all__ = [
    "Blob",
    "Client",
    "Descriptor",
    "EmptyConfig",
    "Index",
    "Layer",
    "Manifest",
    "MediaKind",
    "Reference",
    "compute_digest",
    "media_kind",
    "parse_index",
    "parse_manifest",
]
