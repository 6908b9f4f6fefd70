"""
Service wiring for the API.

The lifespan builds one controller per application and stores it on
app.state; routes receive it through the get_controller dependency.
"""

from fastapi import Request

from draftsign.config import Settings
from draftsign.services.drafting_service import get_drafting_service
from draftsign.services.lifecycle import ContractLifecycleController
from draftsign.services.notification_service import get_notification_service
from draftsign.services.token_service import TokenService
from draftsign.storage.gateway import InMemoryGateway, PersistenceGateway
from draftsign.storage.postgres import PostgresGateway
from draftsign.storage.redis_cache import get_draft_sequencer


def build_gateway(settings: Settings) -> PersistenceGateway:
    """Pick the persistence backend named in the settings."""
    if settings.storage_backend == "memory":
        return InMemoryGateway()
    return PostgresGateway(settings.postgres_url)


def build_controller(gateway: PersistenceGateway) -> ContractLifecycleController:
    return ContractLifecycleController(
        gateway=gateway,
        drafting=get_drafting_service(),
        tokens=TokenService(gateway),
        notifier=get_notification_service(),
        sequencer=get_draft_sequencer(),
    )


def get_controller(request: Request) -> ContractLifecycleController:
    """FastAPI dependency returning the application's controller."""
    return request.app.state.controller


def client_ip(request: Request) -> str | None:
    """Caller address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
