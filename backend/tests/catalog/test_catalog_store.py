"""Tests for the SQLAlchemy catalog store against SQLite."""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from vidpipe.core.database import init_db
from vidpipe.modules.catalog.models import Video, VideoStatus
from vidpipe.modules.catalog.service import (
    SQLAlchemyCatalogStore,
    VideoNotFoundError,
    build_qualities,
)
from vidpipe.modules.processing.models import RenditionResult, RenditionSpec


def rendition(name: str, height: int, width: int, video: int, audio: int) -> RenditionResult:
    spec = RenditionSpec(
        name=name, target_height=height, video_bitrate=video, audio_bitrate=audio, target_width=width
    )
    return RenditionResult.success(
        spec,
        f"https://cdn.test/videos/v/{name}/{name}.m3u8",
        [],
        mp4_locator=f"https://cdn.test/videos/v/{name}/{name}.mp4",
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def seed(engine, factory, video_id="v", user_id="u-1", title="Holiday"):
    await init_db(engine)
    async with factory() as session:
        session.add(Video(id=video_id, user_id=user_id, title=title))
        await session.commit()


async def load(factory, video_id="v") -> Video:
    async with factory() as session:
        return await session.get(Video, video_id)


class TestSQLAlchemyCatalogStore:
    @pytest.mark.asyncio
    async def test_published_video_records_artifacts(self, session_factory):
        engine, factory = session_factory
        await seed(engine, factory)
        store = SQLAlchemyCatalogStore(factory)

        await store.mark_processing("v")
        assert (await load(factory)).status == VideoStatus.PROCESSING.value

        await store.mark_published(
            "v",
            "https://cdn.test/thumbnails/v/thumbnail.jpg",
            "https://cdn.test/videos/v/master.m3u8",
            [rendition("720p", 720, 1280, 2_500_000, 128_000), rendition("360p", 360, 640, 276_000, 64_000)],
            duration_seconds=63.7,
        )

        video = await load(factory)
        assert video.status == "published"
        assert video.thumbnail == "https://cdn.test/thumbnails/v/thumbnail.jpg"
        assert video.hls_playlist == "https://cdn.test/videos/v/master.m3u8"
        assert video.duration == 63
        assert [q["resolution"] for q in video.qualities] == ["360p", "720p"]
        assert video.processed_files == {
            "720p": "https://cdn.test/videos/v/720p/720p.mp4",
            "360p": "https://cdn.test/videos/v/360p/360p.mp4",
        }
        assert video.processed_at is not None
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_failed_video_records_reason(self, session_factory):
        engine, factory = session_factory
        await seed(engine, factory)
        store = SQLAlchemyCatalogStore(factory)

        await store.mark_failed("v", "probe failed")

        video = await load(factory)
        assert video.status == "failed"
        assert video.failure_reason == "probe failed"
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_owner_lookup(self, session_factory):
        engine, factory = session_factory
        await seed(engine, factory, user_id="owner-7")
        store = SQLAlchemyCatalogStore(factory)

        assert await store.get_owner_id("v") == "owner-7"
        assert await store.get_owner_id("other") is None
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_unknown_video_raises(self, session_factory):
        engine, factory = session_factory
        await init_db(engine)

        with pytest.raises(VideoNotFoundError):
            await SQLAlchemyCatalogStore(factory).mark_failed("missing", "probe failed")
        await engine.dispose()


class TestBuildQualities:
    def test_hls_entries_sorted_by_height(self):
        qualities = build_qualities([
            rendition("1080p", 1080, 1920, 4_500_000, 128_000),
            rendition("144p", 144, 256, 95_000, 48_000),
        ])

        assert qualities[0] == {
            "resolution": "144p",
            "url": "https://cdn.test/videos/v/144p/144p.m3u8",
            "bitrate": 143_000,
            "width": 256,
            "height": 144,
            "format": "hls",
        }
        assert qualities[1]["resolution"] == "1080p"
