"""
Project Linker

Attaches a relevant project (and one of its images) to an assistant reply
so the chat UI can show a project card next to the answer.

Rules:
------
- The message must already exist and be an assistant message
- The project must exist
- Without an explicit image, the project's first image (lowest
  order_index) is resolved now and stored; it is never re-resolved later
- Image URLs must be absolute http(s) URLs, anything else is stored as None
- One link per message: linking again updates the existing link

Every failure raises LinkingFailure. Chat orchestration logs it and carries
on; a missing project card never fails a chat turn.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import LinkingFailure
from app.models.content import Project, ProjectImage
from app.models.conversation import ChatMessage, ChatProjectLink, MessageRole

logger = logging.getLogger(__name__)


MIN_IMAGE_URL_LENGTH = 10


def is_valid_image_url(url: Optional[str]) -> bool:
    """Absolute http(s) URL of plausible length."""
    if not url or not isinstance(url, str):
        return False
    return url.startswith(("http://", "https://")) and len(url) > MIN_IMAGE_URL_LENGTH


class ProjectLinker:
    """
    Links projects to assistant messages.

    Usage:
    ------
    linker = ProjectLinker(db)
    link = await linker.link_project_to_message(message_id, project_id)
    link.project_image  # first image URL at link time, or None
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def link_project_to_message(
        self,
        message_id: int,
        project_id: int,
        image_url: Optional[str] = None,
        relevance: Optional[float] = None,
    ) -> ChatProjectLink:
        """
        Create or update the project link of a message.

        Args:
            message_id: Assistant message id
            project_id: Project id
            image_url: Image to attach (default: the project's first image)
            relevance: Relevance score in [0, 1] (default CHAT_LINK_RELEVANCE)

        Returns:
            The stored link

        Raises:
            LinkingFailure: Missing message/project, wrong role, store error
        """
        score = settings.CHAT_LINK_RELEVANCE if relevance is None else relevance
        if not 0.0 <= score <= 1.0:
            raise LinkingFailure(message_id, f"relevance {score} outside [0, 1]")

        try:
            message = await self._get_message(message_id)
            if message is None:
                raise LinkingFailure(message_id, "message does not exist")
            if message.role != MessageRole.ASSISTANT:
                raise LinkingFailure(message_id, "only assistant messages can carry a project")

            project = await self.db.get(Project, project_id)
            if project is None:
                raise LinkingFailure(message_id, f"project {project_id} does not exist")

            if image_url is None:
                image_url = await self.get_project_first_image(project_id)
            if not is_valid_image_url(image_url):
                if image_url:
                    logger.warning(f"Ignoring invalid image URL for project {project_id}: {image_url!r}")
                image_url = None

            link = await self._get_link(message_id)
            if link is None:
                link = ChatProjectLink(message_id=message_id)
                self.db.add(link)

            link.project_id = project_id
            link.project_image = image_url
            link.relevance = score

            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to link project {project_id} to message {message_id}: {e}")
            raise LinkingFailure(message_id, f"store error: {e}") from e

        logger.info(
            f"Linked project {project_id} to message {message_id} "
            f"(image: {'yes' if image_url else 'no'})"
        )
        return link

    async def get_project_first_image(self, project_id: int) -> Optional[str]:
        """URL of the project's image with the lowest order_index."""
        result = await self.db.execute(
            select(ProjectImage.url)
            .where(ProjectImage.project_id == project_id)
            .order_by(ProjectImage.order_index, ProjectImage.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_message(self, message_id: int) -> Optional[ChatMessage]:
        result = await self.db.execute(
            select(ChatMessage).where(ChatMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def _get_link(self, message_id: int) -> Optional[ChatProjectLink]:
        result = await self.db.execute(
            select(ChatProjectLink).where(ChatProjectLink.message_id == message_id)
        )
        return result.scalar_one_or_none()


def create_project_linker(db: AsyncSession) -> ProjectLinker:
    """Create a project linker instance."""
    return ProjectLinker(db)
