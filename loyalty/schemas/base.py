# loyalty/schemas/base.py
# Wire format is camelCase; Python side stays snake_case.

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserBrief(CamelModel):
    id: int
    utorid: str
    name: str
