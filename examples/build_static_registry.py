"""
Example: Build a static registry tree from a GitHub repository.

Usage:
    export GITHUB_TOKEN=your_token_here
    python examples/build_static_registry.py
"""

import asyncio
from pathlib import Path

from registry_express import SyncCoordinator
from registry_express.exporters import StaticTreeExporter
from registry_express.sources import GitHubSource


async def main():
    # Track the servers/ directory of a registry repository
    source = GitHubSource("modelcontextprotocol", "registry", path="servers")

    # Write the tree somewhere a static host can serve it
    output_dir = Path("./registry_output")
    coordinator = SyncCoordinator(
        source,
        branch="main",
        exporter=StaticTreeExporter(output_dir=output_dir),
        poll_interval=0,
    )

    outcome = await coordinator.refresh("example", force=True)
    await coordinator.stop()

    print(f"\n{outcome.value}: {coordinator.session.views.entry_count} servers")
    print(f"✅ Static tree written to: {output_dir.absolute()}")


if __name__ == "__main__":
    asyncio.run(main())
