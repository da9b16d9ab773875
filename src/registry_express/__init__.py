"""
registry-express - Aggregation and synchronization engine for MCP server registries.

Normalizes server descriptor files from a local tree or a tracked repository,
publishes read-optimized static views, and serves them over an HTTP API
compatible with the official registry protocol.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "SyncCoordinator":
        from registry_express.core.sync import SyncCoordinator

        return SyncCoordinator
    if name == "create_app":
        from registry_express.server.app import create_app

        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["SyncCoordinator", "create_app", "__version__"]
