"""
Process Report Module

Read-only rendering of a process instance's complete execution trail:
header, every step with its submitted form data and schema, and progress
summary. Missing related records degrade to placeholder labels.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from .directory import DirectoryProvider
from .instances import InstanceEngine, ProcessInstance, ProcessStepInstance, UNKNOWN_STEP, summarize_progress
from .logging_config import get_logger
from .serializers import field_to_dict
from .storage import format_datetime


logger = get_logger("reports")


class ReportBuilder:
    """Builds execution reports for process instances"""

    def __init__(self, engine: InstanceEngine, directory: DirectoryProvider):
        self.engine = engine
        self.directory = directory

    def build_report(self, instance_id: str) -> Dict[str, Any]:
        """
        Build the report of one instance.

        Returns:
            Dictionary with ``processInfo``, ``steps``, ``summary`` and
            ``generatedAt``. ``formData`` is returned exactly as stored.

        Raises:
            NotFoundError: if the instance does not exist
        """
        instance = self.engine.get_instance(instance_id)
        step_instances = self.engine.get_step_instances(instance.id)

        process_info = self.engine.describe_instance(instance, step_instances)
        for key in ('totalSteps', 'completedSteps', 'skippedSteps', 'progressPercent'):
            process_info.pop(key, None)

        report = {
            'processInfo': process_info,
            'steps': [self._step_entry(instance, si) for si in step_instances],
            'summary': summarize_progress(step_instances),
            'generatedAt': datetime.now(timezone.utc).isoformat()
        }

        logger.debug("Report built for %s with %d steps", instance.process_number, len(step_instances))
        return report

    def _step_entry(self, instance: ProcessInstance, step_instance: ProcessStepInstance) -> Dict[str, Any]:
        step = instance.get_step(step_instance.step_id)
        return {
            'id': step_instance.id,
            'stepId': step_instance.step_id,
            'stepName': step.name if step else UNKNOWN_STEP,
            'stepDescription': step.description if step else None,
            'stepOrder': step_instance.step_order,
            'status': step_instance.status.value,
            'assignedUserId': step_instance.assigned_user_id,
            'assignedUserName': self.directory.user_name(step_instance.assigned_user_id),
            'formData': dict(step_instance.form_data),
            'formFields': [field_to_dict(f) for f in step.form_fields] if step else [],
            'startedAt': format_datetime(step_instance.started_at),
            'completedAt': format_datetime(step_instance.completed_at),
            'completedBy': step_instance.completed_by,
            'completedByName': (self.directory.user_name(step_instance.completed_by)
                                if step_instance.completed_by else None),
            'notes': step_instance.notes
        }
