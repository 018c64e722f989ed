from __future__ import annotations

from pydantic import Field

from quizroster.schemas.base import ApiModel


class TokenRequest(ApiModel):
    token: str = Field(min_length=1, max_length=256)


class JoinResponse(ApiModel):
    joined: bool
    already_member: bool
    assignments_created: int
    group_id: str
    group_name: str
    message: str
