"""Project and style pack persistence.

Each project (and each style pack) is one JSON document in its own row.
Loading validates the document back into the pydantic model, so the stored
shape always matches ``promoreel.schemas``.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promoreel.config import Settings, settings as default_settings
from promoreel.db.models import ProjectRecord, StylePackRecord
from promoreel.errors import ProjectNotFoundError, StylePackNotFoundError
from promoreel.schemas.project import Project, ProjectCreate, utcnow
from promoreel.schemas.style_pack import StylePack, StylePackCreate
from promoreel.services.file_manager import FileManager

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex[:10]


def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    from promoreel.db import async_session

    return async_session


class ProjectStore:
    """CRUD over project documents plus the project's asset directories."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        file_manager: Optional[FileManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory or _default_session_factory()
        self.file_manager = file_manager or FileManager()
        self.settings = settings or default_settings

    def ensure_directories(self, project_id: str) -> Path:
        return self.file_manager.ensure_project_dirs(project_id)

    async def load(self, project_id: str) -> Optional[Project]:
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project_id)
            if record is None:
                return None
            return Project.model_validate(record.document)

    async def get(self, project_id: str) -> Project:
        """Like ``load`` but raises ProjectNotFoundError."""
        project = await self.load(project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return project

    async def save(self, project: Project) -> Project:
        """Persist the whole document, bumping ``last_updated``."""
        project.last_updated = utcnow()
        document = project.model_dump(mode="json")
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project.id)
            if record is None:
                record = ProjectRecord(id=project.id, name=project.name)
                session.add(record)
            record.name = project.name
            record.status = project.status
            record.document = document
            await session.commit()
        return project

    async def create(self, data: Optional[ProjectCreate] = None) -> Project:
        data = data or ProjectCreate()
        pipeline = self.settings.pipeline
        project_id = new_id()
        project = Project(
            id=project_id,
            name=data.name or f"Project {project_id}",
            aspect_ratio=data.aspect_ratio or pipeline.default_aspect_ratio,
            continuity_mode=data.continuity_mode or pipeline.continuity_mode,
            fps_target=pipeline.fps_target,
            target_duration=data.target_duration or pipeline.default_target_duration,
            selected_style_pack_id=data.selected_style_pack_id,
        )
        self.ensure_directories(project_id)
        await self.save(project)
        logger.info(f"Created project {project_id}")
        return project

    async def list(self) -> list[Project]:
        """All projects, most recently updated first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProjectRecord).order_by(ProjectRecord.updated_at.desc())
            )
            projects = [Project.model_validate(r.document) for r in result.scalars()]
        return sorted(projects, key=lambda p: p.last_updated, reverse=True)

    async def delete(self, project_id: str) -> None:
        async with self.session_factory() as session:
            record = await session.get(ProjectRecord, project_id)
            if record is None:
                raise ProjectNotFoundError(f"Project not found: {project_id}")
            await session.delete(record)
            await session.commit()
        logger.info(f"Deleted project {project_id}")


class StylePackStore:
    """CRUD over style pack documents."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        file_manager: Optional[FileManager] = None,
    ):
        self.session_factory = session_factory or _default_session_factory()
        self.file_manager = file_manager or FileManager()

    def ensure_directories(self, pack_id: str) -> Path:
        return self.file_manager.ensure_stylepack_dirs(pack_id)

    async def load(self, pack_id: str) -> Optional[StylePack]:
        async with self.session_factory() as session:
            record = await session.get(StylePackRecord, pack_id)
            if record is None:
                return None
            return StylePack.model_validate(record.document)

    async def get(self, pack_id: str) -> StylePack:
        pack = await self.load(pack_id)
        if pack is None:
            raise StylePackNotFoundError(f"Style pack not found: {pack_id}")
        return pack

    async def save(self, pack: StylePack) -> StylePack:
        self.ensure_directories(pack.pack_id)
        document = pack.model_dump(mode="json")
        async with self.session_factory() as session:
            record = await session.get(StylePackRecord, pack.pack_id)
            if record is None:
                record = StylePackRecord(id=pack.pack_id, name=pack.name)
                session.add(record)
            record.name = pack.name
            record.document = document
            await session.commit()
        return pack

    async def create(self, data: Optional[StylePackCreate] = None) -> StylePack:
        data = data or StylePackCreate()
        pack_id = new_id()
        pack = StylePack(
            pack_id=pack_id,
            name=data.name or f"Style Pack {pack_id}",
            description=data.description or "",
        )
        await self.save(pack)
        logger.info(f"Created style pack {pack_id}")
        return pack

    async def list(self) -> list[StylePack]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StylePackRecord).order_by(StylePackRecord.created_at)
            )
            return [StylePack.model_validate(r.document) for r in result.scalars()]
