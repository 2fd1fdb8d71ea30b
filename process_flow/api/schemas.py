"""
Pydantic schemas for API requests
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..templates import StepInput


class CamelModel(BaseModel):
    """Accepts camelCase on the wire and snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FormFieldModel(CamelModel):
    id: str
    type: str = Field("text", description="text, number, date, checkbox, textarea or select")
    label: str
    required: bool = False
    options: Optional[List[str]] = None


class StepModel(CamelModel):
    id: Optional[str] = Field(None, description="Existing step id to keep on update")
    name: str
    description: Optional[str] = None
    order: Optional[int] = None
    responsible_user_id: Optional[str] = None
    form_fields: List[FormFieldModel] = Field(default_factory=list)

    def to_step_input(self) -> StepInput:
        return StepInput(
            id=self.id,
            name=self.name,
            description=self.description,
            order=self.order,
            responsible_user_id=self.responsible_user_id,
            form_fields=[f.model_dump(exclude_none=True) for f in self.form_fields]
        )


# Template schemas
class CreateTemplateRequest(CamelModel):
    name: str
    description: Optional[str] = None
    steps: List[StepModel] = Field(default_factory=list)


class UpdateTemplateRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[StepModel]] = None


class GrantAccessRequest(CamelModel):
    user_id: str


# Instance schemas
class StartInstanceRequest(CamelModel):
    template_id: str
    client_id: str


class CancelInstanceRequest(CamelModel):
    reason: Optional[str] = None


# Step instance schemas
class ExecuteStepRequest(CamelModel):
    form_data: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None


class SkipStepRequest(CamelModel):
    reason: Optional[str] = None
