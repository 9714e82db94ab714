"""Entry point: python -m cairn [health|reindex|sync|components] [scope]

- "health":  Structural health check (default)
- "reindex": Rebuild index.json from the record files
- "sync":    Reconcile record files, index, graph and embedding cache
- "components": Groups of records joined by graph edges
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from cairn.api import MemoryService
from cairn.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "health"
    scope = sys.argv[2] if len(sys.argv) > 2 else None

    config = load_config()
    _setup_logging(config.log_level)
    service = MemoryService(config)

    if cmd == "health":
        response = asyncio.run(service.check_health(scope))
    elif cmd == "reindex":
        response = asyncio.run(service.rebuild_index(scope))
    elif cmd == "sync":
        response = asyncio.run(service.sync(scope))
    elif cmd == "components":
        response = asyncio.run(service.components(scope))
    else:
        print("Usage: python -m cairn [health|reindex|sync|components] [scope]")
        print("  health   Structural health check (default)")
        print("  reindex  Rebuild index.json from record files")
        print("  sync     Reconcile files, index, graph and embeddings")
        print("  components  Groups of records joined by graph edges")
        sys.exit(1)

    print(json.dumps(response.to_dict(), indent=2, ensure_ascii=False))
    if response.status != "success":
        sys.exit(1)


if __name__ == "__main__":
    main()
