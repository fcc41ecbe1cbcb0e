#!/usr/bin/env python3
"""Script to index catalogue chunks from a JSONL file.

Each line is one chunk as written by the ingestion pipeline:

    {"chunk_id": "reyher-p12-0", "document_id": "reyher-2024",
     "document_name": "reyher.pdf", "supplier": "reyher", "page_number": 12,
     "content": "DIN 933 Hexagon head bolt ...",
     "metadata": {"productType": "bolt", "standard": "DIN 933", "material": "A2"}}

Usage:
    python scripts/index_chunks.py data/chunks/reyher.jsonl [--replace]

With --replace, the chunks of every document in the file are deleted first.
"""

import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from fastener_search.logging_config import get_logger, setup_logging
from fastener_search.models.chunk import CatalogueChunk
from fastener_search.services.search_service import SearchService, SearchServiceError

logger = get_logger(__name__)


def load_chunks(path: Path) -> list[CatalogueChunk]:
    """Read chunks from a JSONL file, skipping invalid lines.

    Args:
        path: JSONL file, one chunk per line

    Returns:
        Valid chunks in file order
    """
    chunks = []
    with open(path, encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                chunks.append(CatalogueChunk.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping line {line_number} of {path.name}: {e}")
    return chunks


async def main():
    """Index all chunks of the given file."""
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    replace = "--replace" in sys.argv[1:]

    if len(args) != 1:
        print("Usage: python scripts/index_chunks.py <chunks.jsonl> [--replace]")
        sys.exit(1)

    path = Path(args[0])
    if not path.exists():
        print(f"Error: File {path} does not exist")
        sys.exit(1)

    setup_logging()

    chunks = load_chunks(path)
    if not chunks:
        print(f"No valid chunks found in {path}")
        sys.exit(0)

    print(f"Found {len(chunks)} chunks in {path.name}\n")

    service = SearchService()
    try:
        if replace:
            for document_id in dict.fromkeys(c.document_id for c in chunks):
                removed = await service.delete_document(document_id)
                print(f"Removed {removed} existing chunks of '{document_id}'")

        indexed = await service.index_chunks(chunks)
        print(f"\n✓ Indexed {indexed} chunks from {path.name}")
    except SearchServiceError as e:
        print(f"\n✗ Indexing failed: {e}")
        sys.exit(1)
    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(main())
