"""
Shared base for API request/response models.

The wire format uses camelCase field names. Python code keeps
snake_case; populate_by_name lets tests and scripts build models
either way.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
