"""
Content Models

Portfolio content that the retrieval engine reads and indexes.

Models Included:
----------------
1. Fact - Free-text fact about the portfolio owner (bio, skills, experience)
2. Project - Structured project record
3. ProjectImage - Ordered images of a project
4. Tool / Tag - Many-to-many labels of a project

Database Tables:
----------------
- facts
- projects, project_images
- tools, tags, project_tools, project_tags (junction tables)

Relationships:
--------------
- Fact (1) ←→ (Many) Fact via parent_id (chunked facts)
- Project (1) ←→ (Many) ProjectImage
- Project (Many) ←→ (Many) Tool via project_tools
- Project (Many) ←→ (Many) Tag via project_tags

These rows are written by the admin layer; this backend only reads them.
The embedding index addresses them by (content_type, content_id), see
app/models/embedding.py.
"""

from typing import Optional

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import BaseModel, JSONType, String100, String255, String500, String1000


# ================================
# Junction Tables
# ================================

project_tools = Table(
    "project_tools",
    BaseModel.metadata,
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tool_id",
        Integer,
        ForeignKey("tools.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    comment="Tools used by each project",
)

project_tags = Table(
    "project_tags",
    BaseModel.metadata,
    Column(
        "project_id",
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    comment="Tags attached to each project",
)


# ================================
# Fact Model
# ================================

class Fact(BaseModel):
    """
    A free-text fact about the portfolio owner.

    Embedded as "{title}: {content}" plus category/keyword lines, see
    ContentIndexer.build_fact_text().

    Example:
    --------
    Fact(
        title="Languages",
        content="I mostly write TypeScript and Python.",
        category="skills",
        keywords=["typescript", "python"],
    )
    """

    __tablename__ = "facts"

    title: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Short fact title shown in context headers"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Fact body"
    )

    category: Mapped[Optional[str]] = mapped_column(
        String100,
        nullable=True,
        index=True,
        comment="Free-form grouping (skills, experience, education...)"
    )

    keywords: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Extra search keywords"
    )

    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Display weight, higher first"
    )

    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("facts.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Parent fact when a long fact is split into chunks"
    )

    def __repr__(self) -> str:
        return f"Fact(id={self.id}, title='{self.title}')"


# ================================
# Project Models
# ================================

class Tool(BaseModel):
    """A technology used by projects (e.g. "FastAPI")."""

    __tablename__ = "tools"

    name: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        unique=True,
        comment="Tool name"
    )


class Tag(BaseModel):
    """A free label attached to projects (e.g. "machine-learning")."""

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(
        String100,
        nullable=False,
        unique=True,
        comment="Tag name"
    )


class ProjectImage(BaseModel):
    """
    An image of a project.

    order_index defines the display order; the lowest index is the project's
    "first image", which is what chat replies attach.
    """

    __tablename__ = "project_images"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to projects table"
    )

    url: Mapped[str] = mapped_column(
        String1000,
        nullable=False,
        comment="Public image URL"
    )

    alt_text: Mapped[Optional[str]] = mapped_column(
        String255,
        nullable=True,
        comment="Accessible description"
    )

    order_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Display order within the project (0 = first)"
    )

    project: Mapped["Project"] = relationship(
        "Project",
        back_populates="images",
    )


class Project(BaseModel):
    """
    A portfolio project.

    Table: projects
    ---------------
    slug is the stable public identifier; title is what users type in chat.
    features is a JSON list of short bullet strings.

    Relationships are eager (selectin) because the indexer and the context
    formatter always need tools, tags and images together with the project.
    """

    __tablename__ = "projects"

    title: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Project name"
    )

    slug: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        unique=True,
        comment="URL-safe unique identifier"
    )

    summary: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="One-paragraph summary"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Long description"
    )

    features: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Key feature bullets"
    )

    url: Mapped[Optional[str]] = mapped_column(
        String500,
        nullable=True,
        comment="Live demo or repository URL"
    )

    featured: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Highlighted on the portfolio front page"
    )

    # ================================
    # Relationships
    # ================================

    images: Mapped[list[ProjectImage]] = relationship(
        ProjectImage,
        back_populates="project",
        cascade="all, delete-orphan",
        order_by=ProjectImage.order_index,
        lazy="selectin"
    )

    tools: Mapped[list[Tool]] = relationship(
        Tool,
        secondary=project_tools,
        order_by=Tool.name,
        lazy="selectin"
    )

    tags: Mapped[list[Tag]] = relationship(
        Tag,
        secondary=project_tags,
        order_by=Tag.name,
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"Project(id={self.id}, slug='{self.slug}')"

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]
