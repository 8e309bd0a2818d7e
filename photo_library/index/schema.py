from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

PHOTO_STATUSES = ("draft", "scheduled", "published", "archived")
PHOTO_VISIBILITIES = ("public", "unlisted", "private")
ORIENTATIONS = ("landscape", "portrait", "square")


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)


class AuditMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_by: Mapped[Optional[str]] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String)


class AssetRow(AuditMixin, Base):
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String, nullable=False, default="image")
    url: Mapped[str] = mapped_column(String, nullable=False)
    width: Mapped[Optional[int]] = mapped_column(Integer)
    height: Mapped[Optional[int]] = mapped_column(Integer)
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    checksum: Mapped[Optional[str]] = mapped_column(String(64), unique=True, index=True)

    photos: Mapped[list["PhotoRow"]] = relationship(back_populates="asset")


class PhotoRow(AuditMixin, Base):
    __tablename__ = "photos"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    asset_original_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("assets.id", ondelete="SET NULL"), index=True
    )
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    aspect_ratio: Mapped[Optional[str]] = mapped_column(String)
    orientation: Mapped[Optional[str]] = mapped_column(String)
    place_name: Mapped[Optional[str]] = mapped_column(String)
    city: Mapped[Optional[str]] = mapped_column(String)
    region: Mapped[Optional[str]] = mapped_column(String)
    country: Mapped[Optional[str]] = mapped_column(String)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    dominant_color: Mapped[Optional[str]] = mapped_column(String(7))
    blurhash: Mapped[Optional[str]] = mapped_column(String)
    megapixels: Mapped[Optional[str]] = mapped_column(String)
    dynamic_range_usage: Mapped[Optional[str]] = mapped_column(String)
    is_visible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("0")
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    visibility: Mapped[str] = mapped_column(String, nullable=False, default="private")

    asset: Mapped[Optional[AssetRow]] = relationship(back_populates="photos")
    renditions: Mapped[list["PhotoRenditionRow"]] = relationship(
        back_populates="photo", cascade="all, delete-orphan", passive_deletes=True
    )
    exif: Mapped[Optional["PhotoExifRow"]] = relationship(
        back_populates="photo", cascade="all, delete-orphan", uselist=False, passive_deletes=True
    )
    histogram: Mapped[Optional["PhotoHistogramRow"]] = relationship(
        back_populates="photo", cascade="all, delete-orphan", uselist=False, passive_deletes=True
    )
    tags: Mapped[list["TagRow"]] = relationship(secondary="photo_tags", back_populates="photos")


class PhotoRenditionRow(AuditMixin, Base):
    __tablename__ = "photo_renditions"
    __table_args__ = (
        UniqueConstraint("photo_id", "variant_name", name="uq_photo_renditions_photo_variant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    photo_id: Mapped[str] = mapped_column(
        ForeignKey("photos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_name: Mapped[str] = mapped_column(String, nullable=False)
    url: Mapped[str] = mapped_column(String, nullable=False)
    width: Mapped[Optional[int]] = mapped_column(Integer)
    height: Mapped[Optional[int]] = mapped_column(Integer)
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    checksum: Mapped[Optional[str]] = mapped_column(String(64))

    photo: Mapped[PhotoRow] = relationship(back_populates="renditions")


class PhotoExifRow(AuditMixin, Base):
    __tablename__ = "photo_exif"

    photo_id: Mapped[str] = mapped_column(
        ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True
    )
    camera_make: Mapped[Optional[str]] = mapped_column(String)
    camera_model: Mapped[Optional[str]] = mapped_column(String)
    lens_model: Mapped[Optional[str]] = mapped_column(String)
    focal_length_mm: Mapped[Optional[float]] = mapped_column(Float)
    aperture: Mapped[Optional[float]] = mapped_column(Float)
    shutter_s: Mapped[Optional[float]] = mapped_column(Float)
    iso: Mapped[Optional[int]] = mapped_column(Integer)
    exposure_compensation_ev: Mapped[Optional[float]] = mapped_column(Float)
    metering_mode: Mapped[Optional[str]] = mapped_column(String)
    white_balance_mode: Mapped[Optional[str]] = mapped_column(String)
    shooting_mode: Mapped[Optional[str]] = mapped_column(String)
    exif_datetime_original: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    color_space: Mapped[Optional[str]] = mapped_column(String)
    bit_depth: Mapped[Optional[int]] = mapped_column(Integer)

    photo: Mapped[PhotoRow] = relationship(back_populates="exif")


class PhotoHistogramRow(AuditMixin, Base):
    __tablename__ = "photo_histograms"

    photo_id: Mapped[str] = mapped_column(
        ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True
    )
    bins: Mapped[int] = mapped_column(Integer, nullable=False, default=256)
    counts_luma: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    counts_red: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    counts_green: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    counts_blue: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    highlights_pct: Mapped[Optional[float]] = mapped_column(Float)
    shadows_pct: Mapped[Optional[float]] = mapped_column(Float)

    photo: Mapped[PhotoRow] = relationship(back_populates="histogram")


class TagRow(AuditMixin, Base):
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    color: Mapped[Optional[str]] = mapped_column(String)

    photos: Mapped[list[PhotoRow]] = relationship(secondary="photo_tags", back_populates="tags")


photo_tags = Table(
    "photo_tags",
    Base.metadata,
    # Association table; Column objects keep it portable across SQLite and Postgres.
    Column("photo_id", ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("created_by", String),
)


def _enable_sqlite_foreign_keys(dbapi_connection: object, _: object) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_from_url(database_url: str) -> Engine:
    kwargs: dict = {"future": True}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # In-memory SQLite must share one connection across sessions and threads.
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_db(database_url: str | Engine) -> Engine:
    engine = (
        database_url if isinstance(database_url, Engine) else create_engine_from_url(database_url)
    )
    Base.metadata.create_all(engine)
    return engine


def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session, future=True)
