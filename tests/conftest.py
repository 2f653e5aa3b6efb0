"""Shared fixtures: offline backends, an isolated data dir and database.

Nothing here touches the network or needs ffmpeg. Media tools are reported
as missing so every placeholder path is exercised deterministically.
"""

from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

from promoreel.config import PipelineConfig, ProvidersConfig, Settings, StorageConfig
from promoreel.db import build_engine, build_session_factory, init_database
from promoreel.orchestrator.pipeline import PipelineContext
from promoreel.providers import Backend, BackendOutput, ImageProvider, ProviderSet, TextProvider, VideoProvider
from promoreel.schemas.generation import GenerationRequest
from promoreel.schemas.script import ScriptSections
from promoreel.services import media
from promoreel.services.costs import CostLedger
from promoreel.services.file_manager import FileManager, atomic_write_bytes
from promoreel.services.project_store import ProjectStore, StylePackStore

FAKE_SCRIPT = ScriptSections(
    hook="Still juggling five apps?",
    problem="Your tools do not talk to each other.",
    solution="Acme pulls everything into one place.",
    cta="Start your free trial today.",
)


async def no_sleep(seconds: float) -> None:
    return None


class FakeBackend(Backend):
    """Scriptable backend: raises queued errors, then writes a small asset."""

    def __init__(
        self,
        name: str,
        *,
        errors: Optional[list[Exception]] = None,
        configured: bool = True,
        supports_first_last: bool = False,
        model: str = "fake-model",
        payload: bytes = b"fake asset",
    ):
        self.name = name
        self.errors = list(errors or [])
        self._configured = configured
        self.supports_first_last = supports_first_last
        self._model = model
        self.payload = payload
        self.calls: list[tuple[GenerationRequest, int]] = []

    @property
    def model(self) -> str:
        return self._model

    def configured(self) -> bool:
        return self._configured

    @property
    def requests(self) -> list[GenerationRequest]:
        return [request for request, _ in self.calls]

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        self.calls.append((request, attempt))
        if self.errors:
            raise self.errors.pop(0)
        if request.output_path is None:
            return BackendOutput(settings={"fake": True})
        path = atomic_write_bytes(Path(request.output_path), self.payload)
        return BackendOutput(asset_path=path, settings={"fake": True})


class FakeTextBackend(FakeBackend):
    def __init__(self, name: str = "fake-text", script: ScriptSections = FAKE_SCRIPT, **kwargs):
        super().__init__(name, **kwargs)
        self.script = script

    async def generate(self, request: GenerationRequest, attempt: int) -> BackendOutput:
        self.calls.append((request, attempt))
        if self.errors:
            raise self.errors.pop(0)
        return BackendOutput(script=self.script, settings={"fake": True})


@pytest.fixture(autouse=True)
def no_media_tools(monkeypatch):
    monkeypatch.setattr(media, "ffmpeg_available", lambda: False)
    monkeypatch.setattr(media, "ffprobe_available", lambda: False)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        providers=ProvidersConfig(use_real_text=True, use_real_image=True, use_real_video=True),
        pipeline=PipelineConfig(
            video_poll_interval=0.0,
            image_poll_interval=0.0,
            video_poll_max=3,
            image_poll_max=3,
        ),
        storage=StorageConfig(
            data_dir=tmp_path / "data",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'promoreel-test.db'}",
        ),
    )


@pytest.fixture
def ledger() -> CostLedger:
    return CostLedger()


@pytest.fixture
def file_manager(test_settings) -> FileManager:
    return FileManager(test_settings.storage.data_dir)


@pytest_asyncio.fixture
async def session_factory(test_settings):
    engine = build_engine(test_settings.storage.database_url)
    await init_database(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def text_backend() -> FakeTextBackend:
    return FakeTextBackend()


@pytest.fixture
def image_backend() -> FakeBackend:
    return FakeBackend("fake-image", payload=b"keyframe")


@pytest.fixture
def video_backend() -> FakeBackend:
    return FakeBackend("fake-video", supports_first_last=True, payload=b"clip")


def make_providers(
    settings: Settings,
    ledger: CostLedger,
    *,
    text: list[Backend],
    image: list[Backend],
    video: list[Backend],
) -> ProviderSet:
    common = {"settings": settings, "ledger": ledger, "sleep": no_sleep}
    return ProviderSet(
        text=TextProvider(text, **common),
        image=ImageProvider(image, **common),
        video=VideoProvider(video, **common),
    )


@pytest.fixture
def providers(test_settings, ledger, text_backend, image_backend, video_backend) -> ProviderSet:
    return make_providers(
        test_settings,
        ledger,
        text=[text_backend],
        image=[image_backend],
        video=[video_backend],
    )


@pytest.fixture
def context(session_factory, test_settings, ledger, providers, file_manager) -> PipelineContext:
    return PipelineContext(
        store=ProjectStore(session_factory, file_manager, test_settings),
        style_packs=StylePackStore(session_factory, file_manager),
        providers=providers,
        file_manager=file_manager,
        settings=test_settings,
        ledger=ledger,
    )
