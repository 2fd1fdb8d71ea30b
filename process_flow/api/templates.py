"""
Process template endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import ProcessSystem, get_caller, get_process_system
from .schemas import CreateTemplateRequest, GrantAccessRequest, UpdateTemplateRequest
from ..directory import CallerContext
from ..errors import AuthorizationError
from ..templates import ProcessTemplate


router = APIRouter()


def _require_manager(template: ProcessTemplate, caller: CallerContext) -> None:
    if not caller.is_admin and template.created_by != caller.user_id:
        raise AuthorizationError("Apenas o criador ou um administrador pode gerenciar o acesso a este modelo")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    request: CreateTemplateRequest,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Create a process template with its steps"""
    template = system.templates.create_template(
        name=request.name,
        description=request.description,
        steps=[step.to_step_input() for step in request.steps],
        created_by=caller.user_id
    )
    return system.templates.describe_template(template)


@router.get("")
async def list_templates(
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """List every template (admin)"""
    if not caller.is_admin:
        raise AuthorizationError("Apenas administradores podem listar todos os modelos")
    return [
        system.templates.describe_template(t, include_steps=False)
        for t in system.templates.list_templates()
    ]


@router.get("/accessible")
async def list_accessible_templates(
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Templates the caller may start"""
    return [
        system.templates.describe_template(t)
        for t in system.templates.list_accessible_templates(caller)
    ]


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Get a template with its steps"""
    template = system.templates.require_template(template_id)
    if template.created_by != caller.user_id and not system.access.has_access(template.id, caller):
        raise AuthorizationError("Você não tem acesso a este modelo de processo")
    return system.templates.describe_template(template)


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    request: UpdateTemplateRequest,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Update name, description or the whole step list"""
    steps = None
    if request.steps is not None:
        steps = [step.to_step_input() for step in request.steps]

    template = system.templates.update_template(
        template_id,
        requested_by=caller,
        name=request.name,
        description=request.description,
        steps=steps
    )
    return system.templates.describe_template(template)


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Delete a template (admin)"""
    removed = system.templates.delete_template(template_id, requested_by=caller)
    return {
        "message": "Modelo de processo excluído com sucesso",
        "instancesRemoved": removed["instances"],
        "stepInstancesRemoved": removed["step_instances"]
    }


# Access list

@router.get("/{template_id}/access")
async def list_template_access(
    template_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Users authorized on a template"""
    template = system.templates.require_template(template_id)
    _require_manager(template, caller)
    return [
        {"userId": user_id, "userName": system.directory.user_name(user_id)}
        for user_id in system.access.list_authorized_users(template.id)
    ]


@router.post("/{template_id}/access", status_code=status.HTTP_201_CREATED)
async def grant_template_access(
    template_id: str,
    request: GrantAccessRequest,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Authorize a user on a template"""
    template = system.templates.require_template(template_id)
    _require_manager(template, caller)
    entry = system.access.grant_access(template.id, request.user_id, granted_by=caller.user_id)
    return {"templateId": entry.template_id, "userId": entry.user_id, "grantedBy": entry.granted_by}


@router.delete("/{template_id}/access/{user_id}")
async def revoke_template_access(
    template_id: str,
    user_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Remove a user from a template's access list"""
    template = system.templates.require_template(template_id)
    _require_manager(template, caller)
    removed = system.access.revoke_access(template.id, user_id, revoked_by=caller.user_id)
    return {"removed": removed}
