"""
Dynamic Form Module

Per-step form schemas. A step declares an ordered list of ``FieldSpec``;
submissions are checked by ``validate_form_data``, which dispatches on the
field type and returns the normalized values to persist.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


class FieldType(Enum):
    """Supported field types"""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    CHECKBOX = "checkbox"
    TEXTAREA = "textarea"
    SELECT = "select"


TRUE_STRINGS = {"true", "on", "1", "yes", "sim"}
FALSE_STRINGS = {"false", "off", "0", "no", "nao", "não", ""}


@dataclass
class FieldSpec:
    """Declarative description of one form field"""
    id: str
    type: FieldType
    label: str
    required: bool = False
    options: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.label or self.id

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'type': self.type.value,
            'label': self.label,
            'required': self.required
        }
        if self.type == FieldType.SELECT:
            data['options'] = list(self.options)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldSpec':
        """Build from a stored or submitted dict; raises ValidationError on unknown types"""
        raw_type = data.get('type') or FieldType.TEXT.value
        try:
            field_type = raw_type if isinstance(raw_type, FieldType) else FieldType(raw_type)
        except ValueError:
            raise ValidationError(f"Tipo de campo inválido: {raw_type}")
        return cls(
            id=str(data.get('id') or ''),
            type=field_type,
            label=str(data.get('label') or ''),
            required=bool(data.get('required', False)),
            options=[str(o) for o in (data.get('options') or [])]
        )


def check_field_specs(fields: List[FieldSpec], context: str = "") -> List[str]:
    """Schema-level checks for a step's field list; returns error messages"""
    errors = []
    prefix = f"{context}: " if context else ""
    seen = set()

    for position, spec in enumerate(fields, start=1):
        if not spec.id.strip():
            errors.append(f"{prefix}campo {position} sem identificador")
        elif spec.id in seen:
            errors.append(f"{prefix}identificador de campo duplicado '{spec.id}'")
        seen.add(spec.id)

        if not spec.label.strip():
            errors.append(f"{prefix}campo '{spec.id or position}' sem rótulo")

        if spec.type == FieldType.SELECT:
            if not spec.options:
                errors.append(f"{prefix}campo de seleção '{spec.display_name}' precisa de opções")
            elif len(set(spec.options)) != len(spec.options):
                errors.append(f"{prefix}campo de seleção '{spec.display_name}' tem opções repetidas")

    return errors


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _coerce_number(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, bool):
        return None, "deve ser um número"
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return None, "deve ser um número"
    else:
        return None, "deve ser um número"

    if isinstance(number, float) and not math.isfinite(number):
        return None, "deve ser um número finito"
    return number, None


def _coerce_date(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, datetime):
        return value.date().isoformat(), None
    if isinstance(value, date):
        return value.isoformat(), None
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.strptime(text, '%Y-%m-%d').date()
        except ValueError:
            return None, "deve ser uma data no formato AAAA-MM-DD"
        return parsed.isoformat(), None
    return None, "deve ser uma data no formato AAAA-MM-DD"


def _coerce_checkbox(value: Any) -> Tuple[Any, Optional[str]]:
    if value is None:
        return False, None
    if isinstance(value, bool):
        return value, None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True, None
        if lowered in FALSE_STRINGS:
            return False, None
    if isinstance(value, int) and value in (0, 1):
        return bool(value), None
    return None, "deve ser verdadeiro ou falso"


def _coerce_text(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, str):
        return value, None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value), None
    return None, "deve ser um texto"


def _coerce_select(spec: FieldSpec, value: Any) -> Tuple[Any, Optional[str]]:
    text = value if isinstance(value, str) else str(value)
    if text not in spec.options:
        return None, f"deve ser uma das opções: {', '.join(spec.options)}"
    return text, None


def coerce_value(spec: FieldSpec, value: Any) -> Tuple[Any, Optional[str]]:
    """Validate and normalize one non-empty value; returns (value, error)"""
    if spec.type == FieldType.NUMBER:
        return _coerce_number(value)
    if spec.type == FieldType.DATE:
        return _coerce_date(value)
    if spec.type == FieldType.CHECKBOX:
        return _coerce_checkbox(value)
    if spec.type == FieldType.SELECT:
        return _coerce_select(spec, value)
    return _coerce_text(value)


def validate_form_data(fields: List[FieldSpec], form_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate a submission against a step's form schema.

    Returns a dict with one entry per declared field (keys not in the schema
    are dropped). Optional fields left empty keep the submitted empty value
    (None when absent) and unchecked checkboxes become False. All problems
    are collected and raised together as one ValidationError naming each
    offending field label.
    """
    if form_data is None:
        form_data = {}
    if not isinstance(form_data, dict):
        raise ValidationError("Dados do formulário devem ser um objeto")

    normalized: Dict[str, Any] = {}
    errors: List[str] = []

    for spec in fields:
        value = form_data.get(spec.id)

        if spec.type == FieldType.CHECKBOX:
            # Checkboxes are never "empty": missing means unchecked
            coerced, error = _coerce_checkbox(value)
            if error:
                errors.append(f"{spec.display_name}: {error}")
            else:
                normalized[spec.id] = coerced
            continue

        if is_empty(value):
            if spec.required:
                errors.append(f"{spec.display_name}: campo obrigatório")
            else:
                normalized[spec.id] = value
            continue

        coerced, error = coerce_value(spec, value)
        if error:
            errors.append(f"{spec.display_name}: {error}")
        else:
            normalized[spec.id] = coerced

    if errors:
        raise ValidationError.from_errors(errors, prefix="Formulário inválido")

    return normalized
