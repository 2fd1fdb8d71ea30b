"""
Step execution endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import ProcessSystem, get_caller, get_process_system
from .schemas import ExecuteStepRequest, SkipStepRequest
from ..directory import CallerContext
from ..serializers import step_instance_to_dict


router = APIRouter()


@router.get("/my-tasks")
async def get_my_tasks(
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Open steps assigned to the caller"""
    return system.engine.get_my_tasks(caller.user_id)


@router.post("/{step_instance_id}/start")
async def start_step(
    step_instance_id: str,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Mark the step as in progress"""
    step_instance = system.engine.start_step(step_instance_id, caller)
    return step_instance_to_dict(step_instance)


@router.post("/{step_instance_id}/execute")
async def execute_step(
    step_instance_id: str,
    request: ExecuteStepRequest,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Submit the step's form and complete it"""
    step_instance = system.engine.execute_step(
        step_instance_id, request.form_data, caller, notes=request.notes
    )
    return step_instance_to_dict(step_instance)


@router.post("/{step_instance_id}/skip")
async def skip_step(
    step_instance_id: str,
    request: Optional[SkipStepRequest] = None,
    caller: CallerContext = Depends(get_caller),
    system: ProcessSystem = Depends(get_process_system)
):
    """Skip the step (admin)"""
    reason = request.reason if request else None
    step_instance = system.engine.skip_step(step_instance_id, caller, reason=reason)
    return step_instance_to_dict(step_instance)
