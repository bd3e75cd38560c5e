"""
Base Schemas for the recruiting backend core
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base class of all schemas"""

    model_config = ConfigDict(
        use_enum_values=True,
        from_attributes=True,
        protected_namespaces=(),
    )


class TimestampedSchema(BaseSchema):
    """Schema carrying the time it was produced"""

    generated_at: datetime
