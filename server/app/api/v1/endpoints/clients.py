from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from app.api.deps import get_engine
from app.crud import clients as client_crud
from app.db.base import DocumentExistsError
from app.schemas.client import ClientCreate, ClientResponse, ClientStatusUpdate
from app.services.billing import BillingEngine

router = APIRouter()


@router.post("/", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    client_data: ClientCreate,
    engine: BillingEngine = Depends(get_engine)
):
    """Register a tenant and their assignment."""
    try:
        client = await client_crud.create_client(
            engine.store,
            name=client_data.name,
            service_type=client_data.service_type,
            assigned_resource=client_data.assigned_resource,
            assigned_at=client_data.assigned_at,
            email=client_data.email,
            company_name=client_data.company_name,
            contact_number=client_data.contact_number,
            billing_cycle=client_data.billing_cycle,
            client_id=client_data.client_id,
        )
    except DocumentExistsError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Client already exists"
        )
    return ClientResponse.model_validate(client)


@router.get("/", response_model=List[ClientResponse])
async def list_clients(
    active_only: bool = False,
    engine: BillingEngine = Depends(get_engine)
):
    """List clients, newest first."""
    clients = await client_crud.list_clients(engine.store, active_only=active_only)
    return [ClientResponse.model_validate(client) for client in clients]


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str,
    engine: BillingEngine = Depends(get_engine)
):
    """Get client by ID."""
    client = await client_crud.require_client(engine.store, client_id)
    return ClientResponse.model_validate(client)


@router.patch("/{client_id}/status", response_model=ClientResponse)
async def update_client_status(
    client_id: str,
    update: ClientStatusUpdate,
    engine: BillingEngine = Depends(get_engine)
):
    """Activate or deactivate a client. Inactive clients are not billed."""
    client = await client_crud.set_client_active(engine.store, client_id, update.is_active)
    return ClientResponse.model_validate(client)
