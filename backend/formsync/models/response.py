"""
Shared responses, their field values, field locks and contribution records.
"""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy import Enum as SQLEnum

from .base import BaseModel, TimestampMixin, utcnow


class ResponseStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    DISCARDED = "DISCARDED"


# Partial unique index predicate: at most one draft per group
DRAFT_ONLY = "status = 'DRAFT'"


class FormResponse(BaseModel, TimestampMixin):
    """
    One response per group cycle. While DRAFT it is the group's shared draft;
    at most one DRAFT exists per sharing code.
    """
    __tablename__ = "form_responses"
    __table_args__ = (
        Index(
            "uq_form_responses_one_draft",
            "sharing_code_id",
            unique=True,
            sqlite_where=text(DRAFT_ONLY),
            postgresql_where=text(DRAFT_ONLY),
        ),
    )

    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    sharing_code_id = Column(
        String(36), ForeignKey("form_sharing_codes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(SQLEnum(ResponseStatus, name="response_status"), default=ResponseStatus.DRAFT, nullable=False)
    submitted_at = Column(DateTime, nullable=True)


class ResponseField(BaseModel):
    __tablename__ = "response_fields"
    __table_args__ = (UniqueConstraint("response_id", "field_id", name="uq_response_field"),)

    response_id = Column(String(36), ForeignKey("form_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    field_id = Column(String(36), ForeignKey("form_fields.id", ondelete="CASCADE"), nullable=False)
    value = Column(Text, nullable=False, default="")


class FieldLock(BaseModel):
    """
    Exclusive lease on one field within one group. The unique constraint on
    (sharing_code_id, field_id) is what makes acquisition atomic.
    """
    __tablename__ = "field_locks"
    __table_args__ = (UniqueConstraint("sharing_code_id", "field_id", name="uq_field_lock"),)

    sharing_code_id = Column(
        String(36), ForeignKey("form_sharing_codes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_id = Column(String(36), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)


class FieldContribution(BaseModel):
    """Who typed what into which field of which group. Attribution only."""
    __tablename__ = "field_contributions"
    __table_args__ = (
        UniqueConstraint("form_id", "sharing_code_id", "field_id", "user_id", name="uq_field_contribution"),
    )

    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    sharing_code_id = Column(String(36), ForeignKey("form_sharing_codes.id", ondelete="CASCADE"), nullable=False)
    field_id = Column(String(36), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
