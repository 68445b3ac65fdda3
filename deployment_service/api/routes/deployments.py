from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response

from deployment_service.api.container import get_deployment_service
from deployment_service.api.schemas.deployment import DeploymentCreateRequest, DeploymentUpdateRequest
from deployment_service.orchestrator.service import DeploymentService

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@router.post("", status_code=201)
def create_deployment(
    request: DeploymentCreateRequest,
    service: DeploymentService = Depends(get_deployment_service),
):
    deployment = service.create_deployment(
        agent_id=request.agent_id,
        user_id=request.user_id,
        name=request.name,
        provider=request.provider,
        config=request.config,
        resources=request.resources.to_domain() if request.resources else None,
        environment=request.environment,
        description=request.description,
    )

    if request.deploy:
        deployment = service.deploy(deployment.deployment_id)

    return deployment.to_dict()


@router.get("/user/{user_id}")
def list_user_deployments(
    user_id: str,
    service: DeploymentService = Depends(get_deployment_service),
):
    return [deployment.to_dict() for deployment in service.list_for_user(user_id)]


@router.get("/{deployment_id}")
def get_deployment(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    return service.require(deployment_id).to_dict()


@router.put("/{deployment_id}")
def update_deployment(
    deployment_id: UUID,
    request: DeploymentUpdateRequest,
    service: DeploymentService = Depends(get_deployment_service),
):
    return service.update(
        deployment_id,
        name=request.name,
        description=request.description,
        config=request.config,
    ).to_dict()


@router.post("/{deployment_id}/stop")
def stop_deployment(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    return service.stop(deployment_id).to_dict()


@router.post("/{deployment_id}/start")
def start_deployment(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    return service.start(deployment_id).to_dict()


@router.delete("/{deployment_id}", status_code=204)
def delete_deployment(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    service.delete(deployment_id)
    return Response(status_code=204)


@router.get("/{deployment_id}/status")
def get_deployment_status(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    deployment = service.refresh_status(deployment_id)
    return {"status": deployment.status.value, "errorMessage": deployment.error_message}


@router.get("/{deployment_id}/metrics")
def get_deployment_metrics(
    deployment_id: UUID,
    service: DeploymentService = Depends(get_deployment_service),
):
    return service.refresh_metrics(deployment_id).to_dict()


@router.get("/{deployment_id}/logs")
def get_deployment_logs(
    deployment_id: UUID,
    tail: int = Query(default=100, ge=1, le=1000),
    service: DeploymentService = Depends(get_deployment_service),
):
    return {"logs": service.get_logs(deployment_id, tail)}
