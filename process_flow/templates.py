"""
Process Template Module

Reusable process definitions: a named template owning an ordered list of
steps, each with a responsible user and a dynamic form schema. Step orders
within a template are always exactly 1..N.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .access import TemplateAccessControl
from .audit import AuditEventType, AuditTrail
from .config import ProcessFlowConfig, get_config
from .directory import CallerContext, DirectoryProvider
from .errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from .forms import FieldSpec, check_field_specs
from .logging_config import get_logger, log_action
from .serializers import template_to_dict
from .storage import StorageInterface, StorageRecord


logger = get_logger("templates")

TEMPLATES_TABLE = "process_templates"
INSTANCES_TABLE = "process_instances"
STEP_INSTANCES_TABLE = "process_step_instances"


@dataclass
class ProcessStep:
    """One ordered stage of a template"""
    id: str
    template_id: str
    name: str
    order: int
    responsible_user_id: str
    description: Optional[str] = None
    form_fields: List[FieldSpec] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'template_id': self.template_id,
            'name': self.name,
            'order': self.order,
            'responsible_user_id': self.responsible_user_id,
            'description': self.description,
            'form_fields': [f.to_dict() for f in self.form_fields]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessStep':
        return cls(
            id=data['id'],
            template_id=data['template_id'],
            name=data['name'],
            order=data['order'],
            responsible_user_id=data['responsible_user_id'],
            description=data.get('description'),
            form_fields=[FieldSpec.from_dict(f) for f in data.get('form_fields', [])]
        )


@dataclass
class StepInput:
    """Caller-supplied step definition for create/update"""
    name: str
    responsible_user_id: Optional[str]
    description: Optional[str] = None
    form_fields: List[Any] = field(default_factory=list)  # FieldSpec or dicts
    order: Optional[int] = None
    id: Optional[str] = None  # keep an existing step's id on update


@dataclass
class ProcessTemplate(StorageRecord):
    """Process template with its ordered steps"""
    name: str
    created_by: str
    description: Optional[str] = None
    steps: List[ProcessStep] = field(default_factory=list)

    def get_step(self, step_id: str) -> Optional[ProcessStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['steps'] = [step.to_dict() for step in self.steps]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessTemplate':
        data = dict(data)
        data['steps'] = [ProcessStep.from_dict(s) for s in data.get('steps', [])]
        return super().from_dict(data)


class TemplateStore:
    """CRUD for process templates and their step lists"""

    def __init__(self, storage: StorageInterface, directory: DirectoryProvider,
                 access: TemplateAccessControl, audit: Optional[AuditTrail] = None,
                 config: Optional[ProcessFlowConfig] = None):
        self.storage = storage
        self.directory = directory
        self.access = access
        self.audit = audit
        self.config = config or get_config()

    # Template management

    def create_template(self, name: str, steps: List[StepInput], created_by: str,
                        description: Optional[str] = None) -> ProcessTemplate:
        """Create a template; the creator is put on its access list"""
        template_id = str(uuid.uuid4())
        self._check_name(name)
        built_steps = self._build_steps(template_id, steps)

        now = datetime.now(timezone.utc)
        template = ProcessTemplate(
            id=template_id,
            created_at=now,
            updated_at=now,
            name=name.strip(),
            created_by=created_by,
            description=description,
            steps=built_steps
        )

        with self.storage.atomic():
            self.storage.save(TEMPLATES_TABLE, template.id, template.to_dict())
            if self.directory.user_exists(created_by):
                self.access.grant_access(template.id, created_by, granted_by=created_by)
            if self.audit:
                self.audit.log_event(
                    AuditEventType.TEMPLATE_CREATED,
                    'process_template',
                    template.id,
                    {'name': template.name, 'steps': len(built_steps)},
                    created_by
                )

        log_action(logger, "info", f"Process template '{template.name}' created",
                   user_id=created_by, action="create_template", resource=template.id)
        return template

    def get_template(self, template_id: str) -> Optional[ProcessTemplate]:
        data = self.storage.load(TEMPLATES_TABLE, template_id)
        return ProcessTemplate.from_dict(data) if data else None

    def require_template(self, template_id: str) -> ProcessTemplate:
        template = self.get_template(template_id)
        if not template:
            raise NotFoundError("Modelo de processo não encontrado")
        return template

    def list_templates(self) -> List[ProcessTemplate]:
        templates = [ProcessTemplate.from_dict(d) for d in self.storage.load_all(TEMPLATES_TABLE)]
        return sorted(templates, key=lambda t: t.name.lower())

    def list_accessible_templates(self, caller: CallerContext) -> List[ProcessTemplate]:
        """Admins see every template; other users only those they are authorized on"""
        templates = self.list_templates()
        if caller.is_admin:
            return templates
        allowed = self.access.accessible_template_ids(caller.user_id)
        return [t for t in templates if t.id in allowed]

    def update_template(self, template_id: str, requested_by: CallerContext,
                        name: Optional[str] = None, description: Optional[str] = None,
                        steps: Optional[List[StepInput]] = None) -> ProcessTemplate:
        """
        Patch a template. ``steps`` replaces the whole step list and is
        re-validated; running instances keep the steps they were started with.
        """
        with self.storage.atomic():
            template = self.require_template(template_id)
            if not requested_by.is_admin and template.created_by != requested_by.user_id:
                raise AuthorizationError("Apenas o criador ou um administrador pode alterar este modelo")

            if name is not None:
                self._check_name(name)
                template.name = name.strip()
            if description is not None:
                template.description = description
            if steps is not None:
                template.steps = self._build_steps(template.id, steps, existing=template.steps)

            template.updated_at = datetime.now(timezone.utc)
            self.storage.save(TEMPLATES_TABLE, template.id, template.to_dict())

            if self.audit:
                self.audit.log_event(
                    AuditEventType.TEMPLATE_UPDATED,
                    'process_template',
                    template.id,
                    {
                        'name': template.name,
                        'steps_replaced': steps is not None,
                        'steps': len(template.steps)
                    },
                    requested_by.user_id
                )

        log_action(logger, "info", f"Process template '{template.name}' updated",
                   user_id=requested_by.user_id, action="update_template", resource=template.id)
        return template

    def delete_template(self, template_id: str, requested_by: CallerContext) -> Dict[str, int]:
        """
        Admin-only delete.

        With the ``reject`` policy, deletion fails while the template has
        active instances; finished ones are removed with it. With
        ``cascade`` every instance goes. Returns counts of removed records.
        """
        if not requested_by.is_admin:
            raise AuthorizationError("Apenas administradores podem excluir modelos de processo")

        policy = self.config.template_delete_policy
        with self.storage.atomic():
            template = self.require_template(template_id)
            instances = self.storage.find(INSTANCES_TABLE, {'template_id': template_id})

            active = [i for i in instances if i['status'] == 'active']
            if active and policy == "reject":
                raise InvalidStateError(
                    f"Modelo possui {len(active)} processo(s) em andamento e não pode ser excluído"
                )

            removed_steps = 0
            for instance in instances:
                for step_instance in self.storage.find(STEP_INSTANCES_TABLE,
                                                       {'process_instance_id': instance['id']}):
                    self.storage.delete(STEP_INSTANCES_TABLE, step_instance['id'])
                    removed_steps += 1
                self.storage.delete(INSTANCES_TABLE, instance['id'])

            self.access.clear(template_id)
            self.storage.delete(TEMPLATES_TABLE, template_id)

            if self.audit:
                self.audit.log_event(
                    AuditEventType.TEMPLATE_DELETED,
                    'process_template',
                    template_id,
                    {
                        'name': template.name,
                        'policy': policy,
                        'instances_removed': len(instances)
                    },
                    requested_by.user_id
                )

        log_action(logger, "info", f"Process template '{template.name}' deleted",
                   user_id=requested_by.user_id, action="delete_template", resource=template_id,
                   extra={'instances_removed': len(instances)})
        return {'instances': len(instances), 'step_instances': removed_steps}

    def describe_template(self, template: ProcessTemplate, include_steps: bool = True) -> Dict[str, Any]:
        """Wire dict plus the creator's display name"""
        data = template_to_dict(template, include_steps=include_steps)
        data['createdByName'] = self.directory.user_name(template.created_by)
        return data

    # Validation helpers

    def _check_name(self, name: Optional[str]) -> None:
        if not name or not name.strip():
            raise ValidationError("Nome do processo é obrigatório", ["name: campo obrigatório"])

    def _build_steps(self, template_id: str, steps: List[StepInput],
                     existing: Optional[List[ProcessStep]] = None) -> List[ProcessStep]:
        """Validate step inputs and turn them into ordered ProcessSteps"""
        if not steps:
            raise ValidationError("Pelo menos uma etapa é obrigatória", ["steps: pelo menos uma etapa"])

        errors: List[str] = []
        ordered = self._order_steps(steps, errors)
        existing_ids = {step.id for step in existing or []}
        used_ids = set()

        built = []
        for order, step_input in ordered:
            label = f"etapa {order}"
            if not step_input.name or not step_input.name.strip():
                errors.append(f"{label}: nome da etapa é obrigatório")
            else:
                label = f"etapa {order} ({step_input.name.strip()})"

            if not step_input.responsible_user_id:
                errors.append(f"{label}: responsável é obrigatório")
            elif not self.directory.user_exists(step_input.responsible_user_id):
                errors.append(f"{label}: responsável não encontrado")

            form_fields = []
            for raw in step_input.form_fields or []:
                if isinstance(raw, FieldSpec):
                    form_fields.append(raw)
                    continue
                try:
                    form_fields.append(FieldSpec.from_dict(raw))
                except ValidationError as e:
                    errors.append(f"{label}: {e.message}")
            errors.extend(check_field_specs(form_fields, context=label))

            # A known id is kept once; repeats get a fresh one
            if step_input.id in existing_ids and step_input.id not in used_ids:
                step_id = step_input.id
            else:
                step_id = str(uuid.uuid4())
            used_ids.add(step_id)
            built.append(ProcessStep(
                id=step_id,
                template_id=template_id,
                name=(step_input.name or "").strip(),
                order=order,
                responsible_user_id=step_input.responsible_user_id or "",
                description=step_input.description,
                form_fields=form_fields
            ))

        if errors:
            raise ValidationError.from_errors(errors, prefix="Modelo de processo inválido")
        return built

    def _order_steps(self, steps: List[StepInput], errors: List[str]) -> List[tuple]:
        """
        Pair each input with its order. Positions give 1..N unless every step
        carries an explicit order, which must then be exactly 1..N.
        """
        explicit = [s.order for s in steps if s.order is not None]
        if not explicit:
            return list(enumerate(steps, start=1))

        if len(explicit) != len(steps):
            errors.append("ordem: informe a ordem de todas as etapas ou de nenhuma")
            return list(enumerate(steps, start=1))

        if sorted(explicit) != list(range(1, len(steps) + 1)):
            errors.append(f"ordem: as etapas devem ser numeradas de 1 a {len(steps)} sem lacunas ou repetições")
            return list(enumerate(steps, start=1))

        return sorted(((s.order, s) for s in steps), key=lambda pair: pair[0])
