"""
SQLAlchemy models for tagq.

Two groups of tables:

Schema tables (what tags exist, which fields they declare, how they inherit)
    tag_metadata, tag_fields, tag_parents

Data tables (the workspace content the query language runs against)
    nodes, tag_applications, field_values

All timestamps are stored as integer epoch milliseconds, matching the
workspace export format.
"""
from typing import Optional
from sqlalchemy import Integer, String, Text, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Schema tables
# =============================================================================

class TagMetadata(Base):
    """
    A tag (supertag) definition.

    Attributes:
        tag_id: Identifier from the workspace export
        tag_name: Display name
        normalized_name: normalize_name(tag_name), used for lookups
        description: Optional description
        color: Optional display color
    """
    __tablename__ = 'tag_metadata'

    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_name: Mapped[str] = mapped_column(String(256), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return f"<TagMetadata(tag_id={self.tag_id!r}, tag_name={self.tag_name!r})>"


class TagField(Base):
    """
    A field declared directly on a tag (inherited fields are not stored).

    inferred_data_type, when set, overrides name-based type inference.
    """
    __tablename__ = 'tag_fields'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tag_name: Mapped[str] = mapped_column(String(256), nullable=False)
    field_name: Mapped[str] = mapped_column(String(256), nullable=False)
    field_label_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    field_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    normalized_name: Mapped[str] = mapped_column(String(256), nullable=False)
    inferred_data_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    __table_args__ = (
        UniqueConstraint('tag_id', 'field_name', name='uq_tag_fields_tag_field'),
        Index('ix_tag_fields_tag_id', 'tag_id'),
        Index('ix_tag_fields_normalized_name', 'normalized_name'),
    )

    def __repr__(self) -> str:
        return f"<TagField(tag={self.tag_name!r}, field={self.field_name!r})>"


class TagParent(Base):
    """Inheritance edge: child tag inherits the parent tag's fields."""
    __tablename__ = 'tag_parents'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    child_tag_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_tag_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint('child_tag_id', 'parent_tag_id', name='uq_tag_parents_edge'),
        Index('ix_tag_parents_child', 'child_tag_id'),
        Index('ix_tag_parents_parent', 'parent_tag_id'),
    )


# =============================================================================
# Data tables
# =============================================================================

class Node(Base):
    """
    An entity from the workspace (a note, task, contact, ...).

    Attributes:
        id: Node identifier from the export
        name: Node title
        parent_id: Owning node, if any
        node_type: Kind of node ('node' for ordinary content)
        created: Creation time (epoch ms)
        updated: Last modification time (epoch ms)
        done_at: Completion time (epoch ms) for done checkboxes
    """
    __tablename__ = 'nodes'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    node_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    updated: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    done_at: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Node(id={self.id!r}, name={self.name!r})>"


class TagApplication(Base):
    """Membership of a node in a tag, via the tuple node that carries the tag."""
    __tablename__ = 'tag_applications'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tuple_node_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    data_node_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tag_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tag_name: Mapped[str] = mapped_column(String(256), nullable=False)

    __table_args__ = (
        Index('ix_tag_applications_data_node', 'data_node_id'),
        Index('ix_tag_applications_tag_id', 'tag_id'),
        Index('ix_tag_applications_tag_node', 'tag_id', 'data_node_id'),
    )


class FieldValue(Base):
    """
    One stored value of a field on a node.

    Multi-valued fields have several rows with increasing value_order.
    value_text is what the query language compares against; the full-text
    index field_values_fts mirrors (field_name, value_text).
    """
    __tablename__ = 'field_values'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tuple_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    parent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    field_def_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    field_name: Mapped[str] = mapped_column(String(256), nullable=False)
    value_node_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    value_text: Mapped[str] = mapped_column(Text, nullable=False, default='')
    value_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index('ix_field_values_parent', 'parent_id'),
        Index('ix_field_values_field_name', 'field_name'),
        Index('ix_field_values_parent_field', 'parent_id', 'field_name'),
    )

    def __repr__(self) -> str:
        return f"<FieldValue(parent={self.parent_id!r}, {self.field_name}={self.value_text!r})>"
