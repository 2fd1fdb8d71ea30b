"""
Process Instance Engine

Runs templates against clients. Starting an instance copies the template's
steps into the instance and creates one step instance per step; steps are
then executed strictly in order by their assigned users, each submission
validated against the step's form schema.

Step instance states::

    waiting -> pending -> in_progress -> completed
    pending | in_progress -> skipped   (admin override)
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .access import TemplateAccessControl
from .audit import AuditEventType, AuditTrail
from .config import ProcessFlowConfig, get_config
from .directory import CallerContext, DirectoryProvider
from .errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from .forms import validate_form_data
from .logging_config import get_logger, log_action
from .serializers import instance_to_dict, step_instance_to_dict, field_to_dict
from .storage import StorageInterface, StorageRecord, format_datetime, parse_datetime
from .templates import ProcessStep, TemplateStore


logger = get_logger("instances")

INSTANCES_TABLE = "process_instances"
STEP_INSTANCES_TABLE = "process_step_instances"
PROCESS_NUMBER_SEQUENCE = "process_number"

UNKNOWN_TEMPLATE = "Modelo desconhecido"
UNKNOWN_STEP = "Etapa desconhecida"


class InstanceStatus(Enum):
    """Status of a whole process instance"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StepInstanceStatus(Enum):
    """Status of one step execution"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    COMPLETED = "completed"
    SKIPPED = "skipped"


OPEN_STATUSES = (StepInstanceStatus.PENDING, StepInstanceStatus.IN_PROGRESS)
DONE_STATUSES = (StepInstanceStatus.COMPLETED, StepInstanceStatus.SKIPPED)


@dataclass
class ProcessInstance(StorageRecord):
    """A template being run for one client"""
    template_id: str
    client_id: str
    name: str
    process_number: str
    status: InstanceStatus
    started_by: str
    started_at: datetime
    current_step_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    step_snapshot: List[ProcessStep] = field(default_factory=list)

    def get_step(self, step_id: Optional[str]) -> Optional[ProcessStep]:
        for step in self.step_snapshot:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['status'] = self.status.value
        data['started_at'] = format_datetime(self.started_at)
        data['completed_at'] = format_datetime(self.completed_at)
        data['cancelled_at'] = format_datetime(self.cancelled_at)
        data['step_snapshot'] = [step.to_dict() for step in self.step_snapshot]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessInstance':
        data = dict(data)
        data['status'] = InstanceStatus(data['status'])
        data['started_at'] = parse_datetime(data['started_at'])
        data['completed_at'] = parse_datetime(data.get('completed_at'))
        data['cancelled_at'] = parse_datetime(data.get('cancelled_at'))
        data['step_snapshot'] = [ProcessStep.from_dict(s) for s in data.get('step_snapshot', [])]
        return super().from_dict(data)


@dataclass
class ProcessStepInstance(StorageRecord):
    """Execution record of one step within one instance"""
    process_instance_id: str
    step_id: str
    step_order: int
    status: StepInstanceStatus
    assigned_user_id: str
    form_data: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['status'] = self.status.value
        data['started_at'] = format_datetime(self.started_at)
        data['completed_at'] = format_datetime(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessStepInstance':
        data = dict(data)
        data['status'] = StepInstanceStatus(data['status'])
        data['started_at'] = parse_datetime(data.get('started_at'))
        data['completed_at'] = parse_datetime(data.get('completed_at'))
        return super().from_dict(data)


class InstanceEngine:
    """Starts process instances and drives their steps to completion"""

    def __init__(self, storage: StorageInterface, directory: DirectoryProvider,
                 templates: TemplateStore, access: TemplateAccessControl,
                 audit: Optional[AuditTrail] = None, config: Optional[ProcessFlowConfig] = None):
        self.storage = storage
        self.directory = directory
        self.templates = templates
        self.access = access
        self.audit = audit
        self.config = config or get_config()

    # Instance lifecycle

    def start_instance(self, template_id: str, client_id: str, caller: CallerContext) -> ProcessInstance:
        """
        Start a template for a client.

        The first step instance is pending and the rest are waiting; each is
        assigned to its step's responsible user. Nothing is written when the
        caller lacks access to the template.
        """
        with self.storage.atomic():
            template = self.templates.require_template(template_id)
            client = self.directory.get_client(client_id)
            if not client:
                raise NotFoundError("Cliente não encontrado")

            if not self.access.has_access(template.id, caller):
                log_action(logger, "warning", "Process start rejected: no access to template",
                           user_id=caller.user_id, action="start_instance", resource=template.id)
                raise AuthorizationError("Você não tem acesso a este modelo de processo")

            if not template.steps:
                raise ValidationError("Modelo de processo não possui etapas")

            steps = sorted(template.steps, key=lambda s: s.order)
            now = datetime.now(timezone.utc)
            sequence = self.storage.next_sequence(PROCESS_NUMBER_SEQUENCE)

            instance = ProcessInstance(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                template_id=template.id,
                client_id=client.id,
                name=f"{template.name} - {client.display_name}",
                process_number=f"{self.config.process_number_prefix}-{now.year}-{sequence:06d}",
                status=InstanceStatus.ACTIVE,
                started_by=caller.user_id,
                started_at=now,
                current_step_id=steps[0].id,
                step_snapshot=steps
            )
            self.storage.save(INSTANCES_TABLE, instance.id, instance.to_dict())

            for position, step in enumerate(steps):
                step_instance = ProcessStepInstance(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    process_instance_id=instance.id,
                    step_id=step.id,
                    step_order=step.order,
                    status=StepInstanceStatus.PENDING if position == 0 else StepInstanceStatus.WAITING,
                    assigned_user_id=step.responsible_user_id
                )
                self.storage.save(STEP_INSTANCES_TABLE, step_instance.id, step_instance.to_dict())

            if self.audit:
                self.audit.log_event(
                    AuditEventType.INSTANCE_STARTED,
                    'process_instance',
                    instance.id,
                    {
                        'template_id': template.id,
                        'client_id': client.id,
                        'process_number': instance.process_number
                    },
                    caller.user_id
                )

        log_action(logger, "info", f"Process {instance.process_number} started",
                   user_id=caller.user_id, action="start_instance", resource=instance.id,
                   extra={'template_id': template.id, 'client_id': client.id})
        return instance

    def cancel_instance(self, instance_id: str, caller: CallerContext,
                        reason: Optional[str] = None) -> ProcessInstance:
        """Cancel an active instance; open step instances stay as they are but can no longer run"""
        with self.storage.atomic():
            instance = self.get_instance(instance_id)
            if not caller.is_admin and instance.started_by != caller.user_id:
                raise AuthorizationError("Apenas quem iniciou o processo ou um administrador pode cancelá-lo")
            if instance.status != InstanceStatus.ACTIVE:
                raise InvalidStateError("Apenas processos em andamento podem ser cancelados")

            now = datetime.now(timezone.utc)
            instance.status = InstanceStatus.CANCELLED
            instance.cancelled_at = now
            instance.cancel_reason = reason
            instance.current_step_id = None
            instance.updated_at = now
            self.storage.save(INSTANCES_TABLE, instance.id, instance.to_dict())

            if self.audit:
                self.audit.log_event(
                    AuditEventType.INSTANCE_CANCELLED,
                    'process_instance',
                    instance.id,
                    {'reason': reason},
                    caller.user_id
                )

        log_action(logger, "info", f"Process {instance.process_number} cancelled",
                   user_id=caller.user_id, action="cancel_instance", resource=instance.id)
        return instance

    def delete_instance(self, instance_id: str, caller: CallerContext) -> int:
        """Admin-only; removes the instance and its step instances. Returns the step count removed."""
        if not caller.is_admin:
            raise AuthorizationError("Apenas administradores podem excluir processos")

        with self.storage.atomic():
            instance = self.get_instance(instance_id)
            removed = 0
            for data in self.storage.find(STEP_INSTANCES_TABLE, {'process_instance_id': instance.id}):
                self.storage.delete(STEP_INSTANCES_TABLE, data['id'])
                removed += 1
            self.storage.delete(INSTANCES_TABLE, instance.id)

            if self.audit:
                self.audit.log_event(
                    AuditEventType.INSTANCE_DELETED,
                    'process_instance',
                    instance.id,
                    {'process_number': instance.process_number, 'step_instances': removed},
                    caller.user_id
                )

        log_action(logger, "info", f"Process {instance.process_number} deleted",
                   user_id=caller.user_id, action="delete_instance", resource=instance.id)
        return removed

    # Step execution

    def execute_step(self, step_instance_id: str, form_data: Optional[Dict[str, Any]],
                     caller: CallerContext, notes: Optional[str] = None) -> ProcessStepInstance:
        """
        Complete a step with its form submission and advance the instance.

        Raises:
            NotFoundError: step instance or its instance missing
            AuthorizationError: caller is neither the assignee nor an admin
            InvalidStateError: instance not active, step waiting or already done
            ValidationError: form data does not match the step's fields
        """
        with self.storage.atomic():
            step_instance = self.get_step_instance(step_instance_id)
            instance = self.get_instance(step_instance.process_instance_id)
            self._check_assignee(step_instance, caller, "execute_step")
            self._check_executable(instance, step_instance)

            step = instance.get_step(step_instance.step_id)
            normalized = validate_form_data(step.form_fields if step else [], form_data)

            now = datetime.now(timezone.utc)
            step_instance.status = StepInstanceStatus.COMPLETED
            step_instance.form_data = normalized
            step_instance.notes = notes
            step_instance.started_at = step_instance.started_at or now
            step_instance.completed_at = now
            step_instance.completed_by = caller.user_id
            self._save_step_instance(step_instance)

            next_step = self._advance(instance, step_instance)

            if self.audit:
                self.audit.log_event(
                    AuditEventType.STEP_EXECUTED,
                    'process_step_instance',
                    step_instance.id,
                    {
                        'process_instance_id': instance.id,
                        'step_id': step_instance.step_id,
                        'step_order': step_instance.step_order,
                        'fields': sorted(normalized.keys())
                    },
                    caller.user_id
                )
                self._audit_completion(instance, caller)

        log_action(logger, "info", f"Step {step_instance.step_order} of {instance.process_number} executed",
                   user_id=caller.user_id, action="execute_step", resource=step_instance.id,
                   extra={'next_step_instance': next_step.id if next_step else None})
        return step_instance

    def start_step(self, step_instance_id: str, caller: CallerContext) -> ProcessStepInstance:
        """Mark a pending step as in progress; a step already in progress is returned unchanged"""
        with self.storage.atomic():
            step_instance = self.get_step_instance(step_instance_id)
            instance = self.get_instance(step_instance.process_instance_id)
            self._check_assignee(step_instance, caller, "start_step")
            self._check_executable(instance, step_instance)

            if step_instance.status == StepInstanceStatus.IN_PROGRESS:
                return step_instance

            step_instance.status = StepInstanceStatus.IN_PROGRESS
            step_instance.started_at = datetime.now(timezone.utc)
            self._save_step_instance(step_instance)

            if self.audit:
                self.audit.log_event(
                    AuditEventType.STEP_STARTED,
                    'process_step_instance',
                    step_instance.id,
                    {'process_instance_id': instance.id, 'step_order': step_instance.step_order},
                    caller.user_id
                )

        log_action(logger, "info", f"Step {step_instance.step_order} of {instance.process_number} started",
                   user_id=caller.user_id, action="start_step", resource=step_instance.id)
        return step_instance

    def skip_step(self, step_instance_id: str, caller: CallerContext,
                  reason: Optional[str] = None) -> ProcessStepInstance:
        """Administrative override: close the current step without a form and advance"""
        if not caller.is_admin:
            log_action(logger, "warning", "Step skip rejected: caller is not an admin",
                       user_id=caller.user_id, action="skip_step", resource=step_instance_id)
            raise AuthorizationError("Apenas administradores podem pular etapas")

        with self.storage.atomic():
            step_instance = self.get_step_instance(step_instance_id)
            instance = self.get_instance(step_instance.process_instance_id)
            self._check_executable(instance, step_instance)
            if step_instance.status != StepInstanceStatus.PENDING:
                raise InvalidStateError("Apenas etapas pendentes podem ser puladas")

            now = datetime.now(timezone.utc)
            step_instance.status = StepInstanceStatus.SKIPPED
            step_instance.notes = reason
            step_instance.completed_at = now
            step_instance.completed_by = caller.user_id
            self._save_step_instance(step_instance)

            self._advance(instance, step_instance)

            if self.audit:
                self.audit.log_event(
                    AuditEventType.STEP_SKIPPED,
                    'process_step_instance',
                    step_instance.id,
                    {
                        'process_instance_id': instance.id,
                        'step_order': step_instance.step_order,
                        'reason': reason
                    },
                    caller.user_id
                )
                self._audit_completion(instance, caller)

        log_action(logger, "info", f"Step {step_instance.step_order} of {instance.process_number} skipped",
                   user_id=caller.user_id, action="skip_step", resource=step_instance.id)
        return step_instance

    # Lookups

    def get_instance(self, instance_id: str) -> ProcessInstance:
        data = self.storage.load(INSTANCES_TABLE, instance_id)
        if not data:
            raise NotFoundError("Processo não encontrado")
        return ProcessInstance.from_dict(data)

    def get_instance_by_number(self, process_number: str) -> ProcessInstance:
        matches = self.storage.find(INSTANCES_TABLE, {'process_number': process_number})
        if not matches:
            raise NotFoundError("Processo não encontrado")
        return ProcessInstance.from_dict(matches[0])

    def list_instances(self, status: Optional[InstanceStatus] = None,
                       template_id: Optional[str] = None, client_id: Optional[str] = None,
                       visible_to: Optional[CallerContext] = None) -> List[ProcessInstance]:
        """
        Filtered instance list, newest first.

        With ``visible_to`` set to a non-admin caller, only instances of
        templates the caller can access, that the caller started, or where
        the caller has an assigned step are returned.
        """
        filters: Dict[str, Any] = {}
        if status:
            filters['status'] = status.value
        if template_id:
            filters['template_id'] = template_id
        if client_id:
            filters['client_id'] = client_id

        instances = [ProcessInstance.from_dict(d) for d in self.storage.find(INSTANCES_TABLE, filters)]

        if visible_to and not visible_to.is_admin:
            allowed_templates = self.access.accessible_template_ids(visible_to.user_id)
            assigned = {
                d['process_instance_id']
                for d in self.storage.find(STEP_INSTANCES_TABLE, {'assigned_user_id': visible_to.user_id})
            }
            instances = [
                i for i in instances
                if i.template_id in allowed_templates
                or i.started_by == visible_to.user_id
                or i.id in assigned
            ]

        return sorted(instances, key=lambda i: i.started_at, reverse=True)

    def can_view(self, instance: ProcessInstance, caller: CallerContext) -> bool:
        if caller.is_admin or instance.started_by == caller.user_id:
            return True
        if self.access.has_access(instance.template_id, caller):
            return True
        return any(si.assigned_user_id == caller.user_id for si in self.get_step_instances(instance.id))

    def get_step_instances(self, instance_id: str) -> List[ProcessStepInstance]:
        """Step instances of an instance in step order"""
        if not self.storage.exists(INSTANCES_TABLE, instance_id):
            raise NotFoundError("Processo não encontrado")
        return self._load_step_instances(instance_id)

    def get_step_instance(self, step_instance_id: str) -> ProcessStepInstance:
        data = self.storage.load(STEP_INSTANCES_TABLE, step_instance_id)
        if not data:
            raise NotFoundError("Etapa do processo não encontrada")
        return ProcessStepInstance.from_dict(data)

    def get_my_tasks(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Open work assigned to a user on active instances.

        Pending and in-progress steps come before waiting ones; within each
        group the oldest process comes first.
        """
        tasks = []
        instances: Dict[str, Optional[ProcessInstance]] = {}

        for data in self.storage.find(STEP_INSTANCES_TABLE, {'assigned_user_id': user_id}):
            step_instance = ProcessStepInstance.from_dict(data)
            if step_instance.status in DONE_STATUSES:
                continue

            instance_id = step_instance.process_instance_id
            if instance_id not in instances:
                instance_data = self.storage.load(INSTANCES_TABLE, instance_id)
                instances[instance_id] = ProcessInstance.from_dict(instance_data) if instance_data else None
            instance = instances[instance_id]
            if not instance or instance.status != InstanceStatus.ACTIVE:
                continue

            step = instance.get_step(step_instance.step_id)
            task = step_instance_to_dict(step_instance)
            task.update({
                'stepName': step.name if step else UNKNOWN_STEP,
                'stepDescription': step.description if step else None,
                'processName': instance.name,
                'processNumber': instance.process_number,
                'templateName': self._template_name(instance.template_id),
                'clientName': self.directory.client_name(instance.client_id),
                'formFields': [field_to_dict(f) for f in step.form_fields] if step else []
            })
            tasks.append((step_instance.status == StepInstanceStatus.WAITING, instance.started_at, task))

        tasks.sort(key=lambda item: (item[0], item[1]))
        return [task for _, _, task in tasks]

    def describe_instance(self, instance: ProcessInstance,
                          step_instances: Optional[List[ProcessStepInstance]] = None) -> Dict[str, Any]:
        """Wire dict enriched with display names and progress counts"""
        if step_instances is None:
            step_instances = self._load_step_instances(instance.id)

        data = instance_to_dict(instance)
        data['templateName'] = self._template_name(instance.template_id)
        data['clientName'] = self.directory.client_name(instance.client_id)
        data['startedByName'] = self.directory.user_name(instance.started_by)
        data['currentStepName'] = self._step_name(instance, instance.current_step_id)
        data['cancelReason'] = instance.cancel_reason
        data.update(summarize_progress(step_instances))
        return data

    # Internal helpers

    def _load_step_instances(self, instance_id: str) -> List[ProcessStepInstance]:
        step_instances = [
            ProcessStepInstance.from_dict(d)
            for d in self.storage.find(STEP_INSTANCES_TABLE, {'process_instance_id': instance_id})
        ]
        return sorted(step_instances, key=lambda si: si.step_order)

    def _template_name(self, template_id: str) -> str:
        template = self.templates.get_template(template_id)
        return template.name if template else UNKNOWN_TEMPLATE

    def _step_name(self, instance: ProcessInstance, step_id: Optional[str]) -> Optional[str]:
        if not step_id:
            return None
        step = instance.get_step(step_id)
        return step.name if step else UNKNOWN_STEP

    def _check_assignee(self, step_instance: ProcessStepInstance, caller: CallerContext, action: str) -> None:
        if caller.is_admin or step_instance.assigned_user_id == caller.user_id:
            return
        log_action(logger, "warning", "Step operation rejected: caller is not the assignee",
                   user_id=caller.user_id, action=action, resource=step_instance.id)
        raise AuthorizationError("Não autorizado a executar esta etapa")

    def _check_executable(self, instance: ProcessInstance, step_instance: ProcessStepInstance) -> None:
        if instance.status != InstanceStatus.ACTIVE:
            raise InvalidStateError("Processo não está em andamento")
        if step_instance.status == StepInstanceStatus.WAITING:
            raise InvalidStateError("Etapa aguardando etapa anterior")
        if step_instance.status in DONE_STATUSES:
            raise InvalidStateError("Esta etapa já foi executada")

    def _save_step_instance(self, step_instance: ProcessStepInstance) -> None:
        """Optimistic write: the stored version must still be the one that was read"""
        stored = self.storage.load(STEP_INSTANCES_TABLE, step_instance.id)
        if not stored or stored.get('version', 0) != step_instance.version:
            raise InvalidStateError("Etapa foi alterada por outra operação")
        step_instance.version += 1
        step_instance.updated_at = datetime.now(timezone.utc)
        self.storage.save(STEP_INSTANCES_TABLE, step_instance.id, step_instance.to_dict())

    def _advance(self, instance: ProcessInstance,
                 finished: ProcessStepInstance) -> Optional[ProcessStepInstance]:
        """Release the next step or complete the instance; returns the released step instance"""
        now = datetime.now(timezone.utc)
        next_step = None
        for candidate in self._load_step_instances(instance.id):
            if candidate.step_order == finished.step_order + 1:
                next_step = candidate
                break

        if next_step:
            if next_step.status == StepInstanceStatus.WAITING:
                next_step.status = StepInstanceStatus.PENDING
                self._save_step_instance(next_step)
            instance.current_step_id = next_step.step_id
        else:
            instance.status = InstanceStatus.COMPLETED
            instance.completed_at = now
            instance.current_step_id = None

        instance.updated_at = now
        self.storage.save(INSTANCES_TABLE, instance.id, instance.to_dict())
        return next_step

    def _audit_completion(self, instance: ProcessInstance, caller: CallerContext) -> None:
        if instance.status == InstanceStatus.COMPLETED:
            self.audit.log_event(
                AuditEventType.INSTANCE_COMPLETED,
                'process_instance',
                instance.id,
                {'process_number': instance.process_number},
                caller.user_id
            )


def summarize_progress(step_instances: List[ProcessStepInstance]) -> Dict[str, int]:
    """Counts shared by instance details and reports"""
    total = len(step_instances)
    completed = sum(1 for si in step_instances if si.status == StepInstanceStatus.COMPLETED)
    skipped = sum(1 for si in step_instances if si.status == StepInstanceStatus.SKIPPED)
    return {
        'totalSteps': total,
        'completedSteps': completed,
        'skippedSteps': skipped,
        'progressPercent': round((completed + skipped) * 100 / total) if total else 0
    }
