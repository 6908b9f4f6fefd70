"""
Token-based signing routes for anonymous counterparties.
"""

import structlog
from fastapi import APIRouter, Depends, Query, Request

from draftsign.api.dependencies import client_ip, get_controller
from draftsign.models.api import (
    SigningSessionResponse,
    TokenRequest,
    TokenSignatureRequest,
    TokenValidationResponse,
)
from draftsign.models.contract import Contract
from draftsign.services.document import render_for_display, segments_to_dict
from draftsign.services.lifecycle import ContractLifecycleController

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/validate", response_model=TokenValidationResponse)
async def validate_token(
    request: TokenRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> TokenValidationResponse:
    """Check a signing link without using it up."""
    record = await controller.tokens.validate(request.token)
    return TokenValidationResponse(
        contract_id=record.contract_id,
        party=record.party,
        recipient_email=record.recipient_email,
        expires_at=record.expires_at,
    )


@router.get("/contract", response_model=SigningSessionResponse)
async def load_for_signing(
    token: str = Query(..., min_length=1),
    controller: ContractLifecycleController = Depends(get_controller),
) -> SigningSessionResponse:
    """Read-only contract for the signing page."""
    session = await controller.open_signing_link(token)
    return SigningSessionResponse(
        contract=session.contract,
        party=session.token.party,
        blocks=[
            segments_to_dict(render_for_display(block)) for block in session.contract.blocks
        ],
    )


@router.post("/sign", response_model=Contract)
async def sign_with_token(
    request: TokenSignatureRequest,
    http_request: Request,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """Sign one field as the link's party. The link is used up on success."""
    return await controller.capture_signature(
        request.contract_id,
        party=None,
        block_index=request.block_index,
        slot_index=request.slot_index,
        image_data=request.image_data,
        signer_name=request.signer_name,
        signed_date=request.signed_date,
        token=request.token,
        ip_address=client_ip(http_request),
    )
