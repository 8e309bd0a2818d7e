#!/usr/bin/env python
"""
Regenerate renditions and derived data for photos from their stored originals.

Usage:
  python scripts/reprocess.py <photo-id> [<photo-id> ...]
  python scripts/reprocess.py --pending   # every photo that needs it
"""
from __future__ import annotations

import argparse

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from photo_library.core.env import configure_logging, load_dotenv_if_present
from photo_library.core.errors import PhotoLibraryError
from photo_library.core.settings import PipelineSettings, StorageSettings, database_url_from_env
from photo_library.index import PhotoRow, PhotoYearCache, init_db, session_factory
from photo_library.ingest import PhotoPipeline, needs_reprocessing
from photo_library.storage import get_blob_store


def main() -> None:
    parser = argparse.ArgumentParser(description="Reprocess photos from their originals.")
    parser.add_argument("photo_ids", nargs="*", help="Photo ids to reprocess")
    parser.add_argument(
        "--pending", action="store_true", help="Reprocess every photo missing derived data"
    )
    parser.add_argument("--user-id", default=None, help="Operator id recorded in audit fields")
    args = parser.parse_args()
    if not args.photo_ids and not args.pending:
        parser.error("pass photo ids or --pending")

    load_dotenv_if_present()
    configure_logging()
    engine = init_db(database_url_from_env())
    SessionLocal = session_factory(engine)
    pipeline = PhotoPipeline(
        SessionLocal,
        get_blob_store(StorageSettings.from_env()),
        PipelineSettings.from_env(),
        year_cache=PhotoYearCache(),
    )

    photo_ids = list(args.photo_ids)
    if args.pending:
        with SessionLocal() as session:
            rows = session.scalars(
                select(PhotoRow).options(
                    selectinload(PhotoRow.renditions), selectinload(PhotoRow.histogram)
                )
            ).all()
            photo_ids.extend(row.id for row in rows if needs_reprocessing(row))

    failed = 0
    for photo_id in photo_ids:
        try:
            result = pipeline.reprocess(photo_id, args.user_id)
        except PhotoLibraryError as exc:
            failed += 1
            print(f"FAILED {photo_id}: {exc}")
            continue
        print(f"{photo_id} -> {result.detail_url}")
    print(f"Reprocess complete: {len(photo_ids) - failed} succeeded, {failed} failed")


if __name__ == "__main__":
    main()
