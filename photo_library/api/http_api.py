import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from sqlalchemy.orm import Session

from photo_library.core.env import configure_logging, load_dotenv_if_present
from photo_library.core.errors import (
    DuplicatePhotoError,
    PayloadTooLargeError,
    PhotoLibraryError,
    PhotoNotFoundError,
    PhotoStateError,
    PhotoValidationError,
)
from photo_library.core.settings import (
    GeocoderSettings,
    PipelineSettings,
    StorageSettings,
    database_url_from_env,
)
from photo_library.geo import GeocodeQueue
from photo_library.index import (
    PhotoYearCache,
    build_photo_detail,
    delete_photo,
    find_photo_by_checksum,
    init_db,
    load_photo_detail,
    load_photo_row,
    session_factory,
    set_photo_tags,
    set_photo_visibility,
    update_photo_metadata,
)
from photo_library.ingest import PhotoPipeline, needs_reprocessing
from photo_library.storage import build_original_key, get_blob_store, infer_extension

app = FastAPI(title="Photo Library API")

load_dotenv_if_present()
configure_logging()

engine = init_db(database_url_from_env())
SessionLocal = session_factory(engine)
storage_settings = StorageSettings.from_env()
pipeline_settings = PipelineSettings.from_env()
blob_store = get_blob_store(storage_settings)
year_cache = PhotoYearCache()
geocode_queue = GeocodeQueue(SessionLocal, GeocoderSettings.from_env())
pipeline = PhotoPipeline(
    SessionLocal,
    blob_store,
    pipeline_settings,
    geocode_queue=geocode_queue,
    year_cache=year_cache,
)

if storage_settings.backend == "local":
    app.mount(
        "/media",
        StaticFiles(directory=storage_settings.local_dir, check_dir=False),
        name="media",
    )


def get_session() -> Session:
    with SessionLocal() as session:
        yield session


@app.exception_handler(PhotoLibraryError)
def photo_library_error(request: Request, exc: PhotoLibraryError) -> JSONResponse:
    if isinstance(exc, DuplicatePhotoError):
        return JSONResponse(
            status_code=409, content={"detail": str(exc), "photo_id": exc.photo_id}
        )
    if isinstance(exc, PhotoValidationError):
        status = 413 if isinstance(exc, PayloadTooLargeError) else 400
    elif isinstance(exc, PhotoNotFoundError):
        status = 404
    elif isinstance(exc, PhotoStateError):
        status = 409
    else:
        status = 500
    return JSONResponse(status_code=status, content={"detail": str(exc)})


class CheckDuplicateRequest(BaseModel):
    checksum: str


class PresignRequest(BaseModel):
    filename: str
    content_type: str
    file_size: int


class CompleteUploadRequest(BaseModel):
    storage_id: str
    key: str
    filename: str
    content_type: str


class VisibilityRequest(BaseModel):
    is_visible: bool


class MetadataRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    captured_at: Optional[datetime] = None
    place_name: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class TagsRequest(BaseModel):
    tags: list[str]


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/photos/check-duplicate")
def check_duplicate(req: CheckDuplicateRequest, session: Session = Depends(get_session)) -> dict:
    try:
        match = find_photo_by_checksum(session, req.checksum)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"exists": match is not None, "existing_photo": match.model_dump() if match else None}


@app.post("/photos/upload/presign")
def presign_upload(req: PresignRequest) -> dict:
    if req.content_type not in pipeline_settings.accepted_content_types:
        raise HTTPException(
            status_code=400, detail="Unsupported content type. Allowed: JPEG, PNG, WebP"
        )
    if req.file_size <= 0:
        raise HTTPException(status_code=400, detail="Missing or invalid file size")
    if req.file_size > pipeline_settings.max_upload_bytes:
        limit_mb = pipeline_settings.max_upload_bytes / 1024 / 1024
        raise HTTPException(status_code=400, detail=f"File size exceeds {limit_mb:g}MB limit")
    presign_put = getattr(blob_store, "presign_put", None)
    if presign_put is None:
        raise HTTPException(
            status_code=400, detail="Direct uploads require the s3 storage backend"
        )

    storage_id = str(uuid.uuid4())
    key = build_original_key(storage_id, infer_extension(req.filename, req.content_type))
    expires_in = storage_settings.presign_expires_seconds
    upload_url = presign_put(key, req.content_type, expires_in)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return {
        "upload_url": upload_url,
        "storage_id": storage_id,
        "key": key,
        "public_base_url": storage_settings.public_base_url,
        "expires_at": expires_at.isoformat(),
    }


@app.post("/photos/upload/complete")
def complete_upload(
    req: CompleteUploadRequest, user_id: Optional[str] = Header(default=None, alias="X-User-Id")
) -> dict:
    if not req.key.startswith(f"photos/{req.storage_id}/original"):
        raise HTTPException(status_code=400, detail="Key does not belong to this storage id")
    result = pipeline.ingest_uploaded(
        req.storage_id, req.key, req.filename, req.content_type, user_id
    )
    return {"photo_id": result.photo_id, "detail_url": result.detail_url}


@app.post("/photos/upload")
def upload_photo(
    file: UploadFile = File(...),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> dict:
    data = file.file.read()
    result = pipeline.ingest(data, file.filename or "", file.content_type, user_id)
    return {"photo_id": result.photo_id, "detail_url": result.detail_url}


@app.get("/photos/years")
def photo_years(session: Session = Depends(get_session)) -> dict:
    return {"years": year_cache.get(session)}


@app.post("/photos/{photo_id}/reprocess")
def reprocess_photo(
    photo_id: str, user_id: Optional[str] = Header(default=None, alias="X-User-Id")
) -> dict:
    result = pipeline.reprocess(photo_id, user_id)
    return {"photo_id": result.photo_id, "detail_url": result.detail_url}


@app.get("/photos/{photo_id}")
def get_photo(photo_id: str, session: Session = Depends(get_session)) -> dict:
    row = load_photo_row(session, photo_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Photo not found")
    detail = build_photo_detail(row)
    return {"photo": detail.model_dump(mode="json"), "needs_reprocessing": needs_reprocessing(row)}


@app.post("/photos/{photo_id}/visibility")
def update_visibility(
    photo_id: str,
    req: VisibilityRequest,
    session: Session = Depends(get_session),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> dict:
    photo = set_photo_visibility(session, photo_id, req.is_visible, user_id)
    session.commit()
    return {"photo_id": photo.id, "is_visible": photo.is_visible, "visibility": photo.visibility}


@app.patch("/photos/{photo_id}")
def update_photo(
    photo_id: str,
    req: MetadataRequest,
    session: Session = Depends(get_session),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> dict:
    try:
        update_photo_metadata(session, photo_id, user_id, **req.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.commit()
    detail = load_photo_detail(session, photo_id)
    return {"photo": detail.model_dump(mode="json") if detail else None}


@app.put("/photos/{photo_id}/tags")
def replace_tags(
    photo_id: str,
    req: TagsRequest,
    session: Session = Depends(get_session),
    user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> dict:
    try:
        tags = set_photo_tags(session, photo_id, req.tags, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.commit()
    return {"tags": [{"id": tag.id, "name": tag.name, "slug": tag.slug} for tag in tags]}


@app.delete("/photos/{photo_id}")
def remove_photo(photo_id: str, session: Session = Depends(get_session)) -> dict:
    failed = delete_photo(session, blob_store, photo_id)
    year_cache.invalidate()
    return {"deleted": photo_id, "blobs_not_deleted": failed}
