from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request and response bodies, which use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StudentUserIdsRequest(CamelModel):
    student_user_ids: list[int]

    @field_validator('student_user_ids', mode='before')
    @classmethod
    def wrap_single_id(cls, value: Any) -> Any:
        if value is not None and not isinstance(value, list):
            return [value]
        return value

    @field_validator('student_user_ids')
    @classmethod
    def require_at_least_one(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError('At least one Student User ID is required')
        return value


class MessageResponse(BaseModel):
    message: str
