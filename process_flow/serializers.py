"""
Wire representations of engine records.

Python code uses snake_case dataclasses; the API and reports speak camelCase
JSON. These functions are the single place where that mapping happens.
"""

from typing import Any, Dict, TYPE_CHECKING

from .forms import FieldSpec
from .storage import format_datetime

if TYPE_CHECKING:
    from .instances import ProcessInstance, ProcessStepInstance
    from .templates import ProcessStep, ProcessTemplate


def field_to_dict(spec: FieldSpec) -> Dict[str, Any]:
    return spec.to_dict()


def step_to_dict(step: 'ProcessStep') -> Dict[str, Any]:
    return {
        'id': step.id,
        'templateId': step.template_id,
        'name': step.name,
        'description': step.description,
        'order': step.order,
        'responsibleUserId': step.responsible_user_id,
        'formFields': [field_to_dict(f) for f in step.form_fields]
    }


def template_to_dict(template: 'ProcessTemplate', include_steps: bool = True) -> Dict[str, Any]:
    data = {
        'id': template.id,
        'name': template.name,
        'description': template.description,
        'createdBy': template.created_by,
        'createdAt': format_datetime(template.created_at),
        'updatedAt': format_datetime(template.updated_at),
        'stepsCount': len(template.steps)
    }
    if include_steps:
        data['steps'] = [step_to_dict(step) for step in template.steps]
    return data


def instance_to_dict(instance: 'ProcessInstance') -> Dict[str, Any]:
    return {
        'id': instance.id,
        'templateId': instance.template_id,
        'clientId': instance.client_id,
        'name': instance.name,
        'processNumber': instance.process_number,
        'status': instance.status.value,
        'currentStepId': instance.current_step_id,
        'startedBy': instance.started_by,
        'startedAt': format_datetime(instance.started_at),
        'completedAt': format_datetime(instance.completed_at),
        'cancelledAt': format_datetime(instance.cancelled_at)
    }


def step_instance_to_dict(step_instance: 'ProcessStepInstance') -> Dict[str, Any]:
    return {
        'id': step_instance.id,
        'processInstanceId': step_instance.process_instance_id,
        'stepId': step_instance.step_id,
        'stepOrder': step_instance.step_order,
        'status': step_instance.status.value,
        'assignedUserId': step_instance.assigned_user_id,
        'formData': dict(step_instance.form_data),
        'notes': step_instance.notes,
        'startedAt': format_datetime(step_instance.started_at),
        'completedAt': format_datetime(step_instance.completed_at),
        'completedBy': step_instance.completed_by
    }
