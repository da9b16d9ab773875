"""Export backends for built view sets."""

from registry_express.exporters.base import Exporter
from registry_express.exporters.static import DiskViewStore, StaticTreeExporter


__all__ = ["Exporter", "StaticTreeExporter", "DiskViewStore"]
