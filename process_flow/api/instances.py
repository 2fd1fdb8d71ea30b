"""
Process instance endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from .auth import ProcessSystem, get_caller, get_process_system
from .schemas import CancelInstanceRequest, StartInstanceRequest
from ..directory import CallerContext
from ..errors import AuthorizationError
from ..instances import InstanceStatus, ProcessInstance
from ..serializers import step_instance_to_dict


router = APIRouter()


def _require_viewer(system: ProcessSystem, instance: ProcessInstance, caller: CallerContext) -> None:
    if not system.engine.can_view(instance, caller):
        raise AuthorizationError("Você não tem acesso a este processo")


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_instance(
    request: StartInstanceRequest,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Start a process from a template for a client"""
    instance = system.engine.start_instance(request.template_id, request.client_id, caller)
    return system.engine.describe_instance(instance)


@router.get("")
async def list_instances(
    status: Optional[str] = None,
    template_id: Optional[str] = None,
    client_id: Optional[str] = None,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """List processes visible to the caller"""
    instance_status = None
    if status:
        try:
            instance_status = InstanceStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    instances = system.engine.list_instances(
        status=instance_status,
        template_id=template_id,
        client_id=client_id,
        visible_to=caller
    )
    return [system.engine.describe_instance(i) for i in instances]


@router.get("/number/{process_number}")
async def get_instance_by_number(
    process_number: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Look up a process by its human-readable number"""
    instance = system.engine.get_instance_by_number(process_number)
    _require_viewer(system, instance, caller)
    return system.engine.describe_instance(instance)


@router.get("/{instance_id}")
async def get_instance(
    instance_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Get process details"""
    instance = system.engine.get_instance(instance_id)
    _require_viewer(system, instance, caller)
    return system.engine.describe_instance(instance)


@router.get("/{instance_id}/steps")
async def get_instance_steps(
    instance_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Step executions of a process in order"""
    instance = system.engine.get_instance(instance_id)
    _require_viewer(system, instance, caller)

    result = []
    for step_instance in system.engine.get_step_instances(instance.id):
        data = step_instance_to_dict(step_instance)
        step = instance.get_step(step_instance.step_id)
        data['stepName'] = step.name if step else None
        data['assignedUserName'] = system.directory.user_name(step_instance.assigned_user_id)
        result.append(data)
    return result


@router.get("/{instance_id}/report")
async def get_instance_report(
    instance_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Full execution report"""
    instance = system.engine.get_instance(instance_id)
    _require_viewer(system, instance, caller)
    return system.reports.build_report(instance.id)


@router.post("/{instance_id}/cancel")
async def cancel_instance(
    instance_id: str,
    request: Optional[CancelInstanceRequest] = None,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Cancel an active process"""
    reason = request.reason if request else None
    instance = system.engine.cancel_instance(instance_id, caller, reason=reason)
    return system.engine.describe_instance(instance)


@router.delete("/{instance_id}")
async def delete_instance(
    instance_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Delete a process and its step executions (admin)"""
    removed = system.engine.delete_instance(instance_id, caller)
    return {"message": "Processo excluído com sucesso", "stepInstancesRemoved": removed}
