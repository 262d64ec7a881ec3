"""Serialization of feature snapshots."""

from pulsescope.io.exporter import SnapshotExporter

__all__ = ["SnapshotExporter"]
