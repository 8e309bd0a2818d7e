#!/usr/bin/env python
"""
Ingest image files (or every supported image under a directory) into the library.

Usage:
  python scripts/ingest.py /absolute/path/to/photo.jpg
  DATABASE_URL=sqlite+pysqlite:///./photo_library.db python scripts/ingest.py ~/Pictures --user-id admin
"""
from __future__ import annotations

import argparse
import mimetypes
from pathlib import Path

from photo_library.core.env import configure_logging, load_dotenv_if_present
from photo_library.core.errors import PhotoLibraryError
from photo_library.core.settings import (
    GeocoderSettings,
    PipelineSettings,
    StorageSettings,
    database_url_from_env,
)
from photo_library.geo import GeocodeQueue
from photo_library.index import PhotoYearCache, init_db, session_factory
from photo_library.ingest import PhotoPipeline
from photo_library.storage import get_blob_store

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


def _collect(paths: list[Path]) -> list[Path]:
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix.lower() in SUPPORTED_EXTENSIONS)
            )
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"Not found: {path}")
    return files


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest photos into the library.")
    parser.add_argument("paths", type=Path, nargs="+", help="Image files or directories")
    parser.add_argument("--user-id", default=None, help="Operator id recorded in audit fields")
    args = parser.parse_args()

    load_dotenv_if_present()
    configure_logging()
    engine = init_db(database_url_from_env())
    SessionLocal = session_factory(engine)
    geocode_queue = GeocodeQueue(SessionLocal, GeocoderSettings.from_env())
    pipeline = PhotoPipeline(
        SessionLocal,
        get_blob_store(StorageSettings.from_env()),
        PipelineSettings.from_env(),
        geocode_queue=geocode_queue,
        year_cache=PhotoYearCache(),
    )

    ingested = 0
    failed = 0
    try:
        for path in _collect(args.paths):
            content_type, _ = mimetypes.guess_type(path.name)
            try:
                result = pipeline.ingest(path.read_bytes(), path.name, content_type, args.user_id)
            except PhotoLibraryError as exc:
                failed += 1
                print(f"FAILED {path}: {exc}")
                continue
            ingested += 1
            print(f"{path} -> {result.photo_id} ({result.detail_url})")
    finally:
        # Let queued geocode lookups finish before the process exits.
        geocode_queue.shutdown(wait=True)
    print(f"Ingest complete: {ingested} ingested, {failed} failed")


if __name__ == "__main__":
    main()
