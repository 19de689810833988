"""
Maintenance task for the short link registry.

This script can be scheduled to run periodically to remove expired short
links from the configured storage backend.

Usage:
    python -m src.scripts.purge_expired [--all]
"""

import argparse

from src.shortener.core.config import settings
from src.shortener.services.registry import Registry
from src.shortener.services.storage import build_store


def run_purge(purge_all: bool = False, registry: Registry = None) -> int:
    """Load the persisted registry and purge it; returns how many links were removed."""
    if registry is None:
        registry = Registry(store=build_store(settings))
    loaded = registry.load()
    print(f"Loaded {loaded} short links")

    if purge_all:
        removed = registry.purge_all()
        print(f"Removed all {removed} short links")
        return removed

    expired_count = registry.purge_expired()
    print(f"Cleaned up {expired_count} expired short links")
    return expired_count


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Purge short links from storage")
    parser.add_argument("--all", action="store_true", help="remove every link, not only expired ones")
    args = parser.parse_args(argv)
    return run_purge(purge_all=args.all)


if __name__ == "__main__":
    total_cleaned = main()
    print(f"Total cleaned short links: {total_cleaned}")
