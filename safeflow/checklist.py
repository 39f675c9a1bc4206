"""Checklist items attached to records and closure submissions."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class BooleanItem(BaseModel):
    """A yes/no check; answered only when ticked."""

    kind: Literal["boolean"] = "boolean"
    label: str
    required: bool = True
    value: Optional[bool] = None
    remarks: Optional[str] = None

    def is_answered(self) -> bool:
        return self.value is True


class TextItem(BaseModel):
    kind: Literal["text"] = "text"
    label: str
    required: bool = True
    value: Optional[str] = None

    def is_answered(self) -> bool:
        return bool(self.value and self.value.strip())


class NumberItem(BaseModel):
    kind: Literal["number"] = "number"
    label: str
    required: bool = True
    unit: Optional[str] = None
    value: Optional[float] = None

    def is_answered(self) -> bool:
        return self.value is not None


class ChoiceItem(BaseModel):
    """One answer picked from a closed list of options."""

    kind: Literal["choice"] = "choice"
    label: str
    required: bool = True
    options: List[str] = Field(min_length=1)
    value: Optional[str] = None

    @model_validator(mode="after")
    def _value_in_options(self) -> "ChoiceItem":
        if self.value is not None and self.value not in self.options:
            raise ValueError(f"{self.value!r} is not one of {self.options}")
        return self

    def is_answered(self) -> bool:
        return self.value is not None


ChecklistItem = Annotated[
    Union[BooleanItem, TextItem, NumberItem, ChoiceItem],
    Field(discriminator="kind"),
]


def unanswered(items: List[ChecklistItem]) -> List[str]:
    """Labels of required items that still lack an answer."""
    return [item.label for item in items if item.required and not item.is_answered()]


def from_template(labels: List[str]) -> List[ChecklistItem]:
    """Build unticked boolean checks from a list of template labels."""
    return [BooleanItem(label=label) for label in labels]
