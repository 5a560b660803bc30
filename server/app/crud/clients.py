from typing import List, Optional
from datetime import date
import logging

from bson import ObjectId

from app.core.errors import ClientNotFoundError
from app.db.base import DocumentStore, read_with_retry
from app.models.bill import BillingCycle, ServiceType, utcnow
from app.models.client import Client

logger = logging.getLogger(__name__)

CLIENTS_COLLECTION = "clients"


def client_path(client_id: str) -> str:
    return f"{CLIENTS_COLLECTION}/{client_id}"


async def create_client(
    store: DocumentStore,
    name: str,
    service_type: ServiceType,
    assigned_resource: str,
    assigned_at: date,
    email: Optional[str] = None,
    company_name: Optional[str] = None,
    contact_number: Optional[str] = None,
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    client_id: Optional[str] = None,
) -> Client:
    """Create a new client record."""
    client = Client(
        client_id=client_id or str(ObjectId()),
        name=name,
        email=email,
        company_name=company_name,
        contact_number=contact_number,
        service_type=service_type,
        assigned_resource=assigned_resource,
        assigned_at=assigned_at,
        billing_cycle=billing_cycle,
    )
    await store.create(client_path(client.client_id), client.to_document())
    logger.info(f"Created client {client.client_id} on {client.assigned_resource}")
    return client


async def get_client(store: DocumentStore, client_id: str) -> Optional[Client]:
    """Get client by ID."""
    doc = await read_with_retry(lambda: store.get(client_path(client_id)), description="client get")
    return Client.from_document(doc) if doc else None


async def require_client(store: DocumentStore, client_id: str) -> Client:
    client = await get_client(store, client_id)
    if client is None:
        raise ClientNotFoundError(f"client {client_id} does not exist", client_id=client_id)
    return client


async def list_clients(store: DocumentStore, active_only: bool = False) -> List[Client]:
    """List clients, newest first."""
    filters = [("isActive", "==", True)] if active_only else []
    docs = await read_with_retry(
        lambda: store.query(CLIENTS_COLLECTION, filters, order_by=["-createdAt"]),
        description="client query",
    )
    return [Client.from_document(doc) for doc in docs]


async def set_client_active(store: DocumentStore, client_id: str, is_active: bool) -> Client:
    """Activate or deactivate a client."""
    doc = await store.update(client_path(client_id), {"isActive": is_active, "updatedAt": utcnow()})
    if doc is None:
        raise ClientNotFoundError(f"client {client_id} does not exist", client_id=client_id)
    return Client.from_document(doc)

