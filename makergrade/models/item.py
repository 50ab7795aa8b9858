"""
Item models for discovered and scraped MakerWorld designs.

An Item is keyed by the numeric model id parsed from its canonical URL, so
every pipeline that touches the same design converges on one row.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from makergrade.core.database import Base
from makergrade.models.job import JSONType


class Item(Base):
    """
    A design page on the listing site.

    Attributes:
        id: Numeric model id taken from the canonical URL
        url: Canonical item URL
        title: Design title
        author: Designer display name
        downloads: Download count shown on the page
        cover_image: Representative image URL
        description: Page body text, truncated
        images: Ordered image collection, replaced wholesale on refresh
        label: Grade assigned by the label pipeline, if any
    """

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Numeric model id from the canonical URL",
    )

    url: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
        comment="Canonical item URL",
    )

    title: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
        comment="Design title",
    )

    author: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Designer display name",
    )

    downloads: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Download count metric",
    )

    cover_image: Mapped[str | None] = mapped_column(
        String(2048),
        nullable=True,
        comment="Representative image URL",
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Page body text",
    )

    images: Mapped[list["ItemImage"]] = relationship(
        "ItemImage",
        back_populates="item",
        order_by="ItemImage.idx",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    label: Mapped["ItemLabel | None"] = relationship(
        "ItemLabel",
        back_populates="item",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Item {self.id} '{self.title}'>"


class ItemImage(Base):
    """One image of an Item, ordered by ``idx``."""

    __tablename__ = "item_images"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="<item_id>_<idx>",
    )

    item_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    idx: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position within the item's gallery",
    )

    url: Mapped[str] = mapped_column(String(2048), nullable=False)

    item: Mapped[Item] = relationship("Item", back_populates="images")


class ItemLabel(Base):
    """
    Grade assigned to an Item.

    At most one per item; ``extracted`` holds the structured features the
    labeler reported alongside the grade.
    """

    __tablename__ = "item_labels"

    item_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("items.id", ondelete="CASCADE"),
        primary_key=True,
    )

    grade: Mapped[str] = mapped_column(
        String(1),
        nullable=False,
        comment="One of S, A, B, C, D",
    )

    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Grader rationale",
    )

    extracted: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Structured feature extraction",
    )

    item: Mapped[Item] = relationship("Item", back_populates="label")
