#!/usr/bin/env python3
"""Rebuild chunk embeddings for one or more campaigns.

Every entity's chunk set is deleted and re-embedded through Jina, the same
path the API uses after an edit. Run it after changing the embedding model
or dimensions. Safe to run next to the API (WAL mode).

Usage:
    python scripts/reindex_embeddings.py CAMPAIGN_ID [CAMPAIGN_ID ...]
    python scripts/reindex_embeddings.py --all
    python scripts/reindex_embeddings.py --all --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from lorekeeper.config import load_config
from lorekeeper.embeddings import JinaEmbeddings
from lorekeeper.storage import GraphStorage
from lorekeeper.sync import EmbeddingSynchronizer

logger = logging.getLogger("reindex_embeddings")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild campaign chunk embeddings")
    parser.add_argument("campaigns", nargs="*", help="Campaign ids to reindex")
    parser.add_argument(
        "--all",
        action="store_true",
        help="Reindex every campaign that has entities",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be reindexed without calling the embedding API",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    cfg = load_config()
    if not cfg.jina_api_key and not args.dry_run:
        logger.error("No JINA_API_KEY configured - cannot generate embeddings")
        return 1

    storage = GraphStorage(db_path=cfg.db_path, dimensions=cfg.embedding_dimensions)
    try:
        campaigns = storage.list_campaigns() if args.all else list(args.campaigns)
        if not campaigns:
            logger.error("No campaigns given (pass ids or --all)")
            return 1

        if args.dry_run:
            for campaign_id in campaigns:
                logger.info(
                    "[DRY-RUN] Would reindex campaign %s (%d entities)",
                    campaign_id, storage.count_entities(campaign_id),
                )
            return 0

        embedder = JinaEmbeddings(
            api_key=cfg.jina_api_key,
            model=cfg.embedding_model,
            dimensions=cfg.embedding_dimensions,
            max_retries=cfg.embed_max_retries,
        )
        synchronizer = EmbeddingSynchronizer(storage, embedder)

        failed = 0
        for campaign_id in campaigns:
            totals = await synchronizer.reindex_campaign(campaign_id)
            if totals["partial"]:
                failed += len(totals["partial"])
                logger.warning(
                    "Campaign %s: %d entities only partially indexed",
                    campaign_id, len(totals["partial"]),
                )
        return 1 if failed else 0
    finally:
        storage.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
