"""
Document Store schema setup

Creates the collections and indexes the token store relies on (unique
emails, unique checkout ids, download grants) and stamps the schema version
in docstore_meta. Nothing is ever dropped; existing collections and indexes
are left alone, so it is safe to run on every server start.

Usage:
    python -m token_wallet.db_init [--dry-run]

With APP_ENV=production the CLI refuses to run unless DOCSTORE_INIT_CONFIRM=YES.
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import CollectionInvalid, OperationFailure

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "v1.0.0"
META_COLLECTION = "docstore_meta"
VERSION_DOC_ID = "docstore_init"

REQUIRED_COLLECTIONS = [
    "users",
    "payments",
    "downloads",
    "payment_logs",
    META_COLLECTION,
]

# (collection, keys, options); every index is named so reruns can detect it
REQUIRED_INDEXES = [
    ("users", [("email", 1)], {"unique": True, "name": "idx_email_unique"}),
    ("users", [("id", 1)], {"unique": True, "name": "idx_user_id_unique"}),

    ("payments", [("payment_id", 1)], {"unique": True, "name": "idx_payment_id_unique"}),
    # One gateway checkout can only ever settle one payment
    ("payments", [("checkout_request_id", 1)], {"unique": True, "sparse": True, "name": "idx_checkout_request_id_unique"}),
    ("payments", [("user_id", 1)], {"name": "idx_user_id"}),
    ("payments", [("status", 1)], {"name": "idx_status"}),
    ("payments", [("created_at", -1)], {"name": "idx_created_at"}),

    ("downloads", [("download_id", 1)], {"unique": True, "name": "idx_download_id_unique"}),
    ("downloads", [("user_id", 1), ("created_at", -1)], {"name": "idx_user_created"}),
    ("downloads", [("document_id", 1)], {"name": "idx_document_id"}),

    ("payment_logs", [("payment_id", 1)], {"name": "idx_payment_id"}),
    ("payment_logs", [("checkout_request_id", 1)], {"name": "idx_checkout_request_id"}),
    ("payment_logs", [("created_at", -1)], {"name": "idx_created_at"}),
]


def production_block_reason() -> Optional[str]:
    """Why the CLI must not run here, or None when it may."""
    if os.environ.get("APP_ENV", "development").lower() != "production":
        return None
    if os.environ.get("DOCSTORE_INIT_CONFIRM") == "YES":
        return None
    return "APP_ENV=production: set DOCSTORE_INIT_CONFIRM=YES to initialise the production database"


async def apply_schema(db, dry_run: bool = False) -> List[str]:
    """
    Create missing collections and indexes, then stamp the schema version.

    Returns one "[CREATE]", "[SKIP]" or "[DRY-RUN]" line per collection and
    index, plus a final line for the version stamp.
    """
    action = "[DRY-RUN] Would create" if dry_run else "[CREATE] Created"
    lines = []

    existing = set(await db.list_collection_names())
    for name in REQUIRED_COLLECTIONS:
        if name in existing:
            lines.append(f"  [SKIP] collection '{name}'")
            continue
        if not dry_run:
            try:
                await db.create_collection(name)
            except CollectionInvalid:
                # Created concurrently by another process
                lines.append(f"  [SKIP] collection '{name}'")
                continue
        lines.append(f"  {action} collection '{name}'")

    present = {}
    for name, keys, options in REQUIRED_INDEXES:
        if name not in present:
            present[name] = set(await db[name].index_information())
        index_name = options["name"]
        if index_name in present[name]:
            lines.append(f"  [SKIP] index '{index_name}' on '{name}'")
            continue
        if not dry_run:
            try:
                await db[name].create_index(keys, **options)
            except OperationFailure as e:
                if "already exists" not in str(e).lower():
                    raise
                lines.append(f"  [SKIP] index '{index_name}' on '{name}'")
                continue
        lines.append(f"  {action} index '{index_name}' on '{name}'")

    if dry_run:
        lines.append(f"  [DRY-RUN] Would stamp schema version {SCHEMA_VERSION}")
    else:
        await db[META_COLLECTION].update_one(
            {"_id": VERSION_DOC_ID},
            {"$set": {"version": SCHEMA_VERSION, "applied_at": datetime.now(timezone.utc).isoformat()}},
            upsert=True
        )
        lines.append(f"  [UPDATE] Schema version {SCHEMA_VERSION}")

    return lines


async def run_init(dry_run: bool = False):
    from database import connect_database
    from utils.environment import load_settings

    reason = production_block_reason()
    if reason:
        logger.error(reason)
        sys.exit(1)

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    mongo = connect_database(settings)
    db_ok, db_error = await mongo.check_connection()
    if not db_ok:
        logger.error(db_error)
        sys.exit(1)

    try:
        logger.info(f"Applying schema to {settings.db_name} (dry run: {dry_run})")
        for line in await apply_schema(mongo.db, dry_run):
            logger.info(line)
    finally:
        mongo.close()


def main():
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Create the document store collections and indexes")
    parser.add_argument('--dry-run', action='store_true', help='Only report what would be created')
    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
