"""Member statistics domain models."""

from pydantic import BaseModel, Field


class MemberStat(BaseModel):
    """Per-group counters for one member."""

    group_id: str = Field(..., description="Group ID")
    user_id: str = Field(..., description="Member ID")
    completed_count: int = Field(default=0, ge=0, description="Completed tasks")
    completed_stars: int = Field(default=0, description="Difficulty points; may go negative after penalties")
    overdue_count: int = Field(default=0, ge=0, description="Missed deadlines")


class StatsDelta(BaseModel):
    """Signed increments applied atomically to a MemberStat row."""

    completed_count: int = 0
    completed_stars: int = 0
    overdue_count: int = 0
