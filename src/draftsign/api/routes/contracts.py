"""
Contract drafting, editing and owner-side signing routes.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from draftsign.api.dependencies import get_controller
from draftsign.models.api import (
    CreateContractRequest,
    DisplayResponse,
    ManualEditRequest,
    RegenerateRequest,
    SendContractRequest,
    SendContractResponse,
    SignatureRequest,
    SigningRequestSummary,
    SubstituteUnknownsRequest,
    UnknownItem,
    UnknownsResponse,
    UpdatePartiesRequest,
    UpdateTitleRequest,
)
from draftsign.models.contract import Contract
from draftsign.services.document import render_for_display, segments_to_dict
from draftsign.services.lifecycle import ContractLifecycleController
from draftsign.services.placeholders import categorize_unknown

logger = structlog.get_logger(__name__)
router = APIRouter()


# =============================================================================
# Creation and reads
# =============================================================================


@router.post("", response_model=Contract, status_code=status.HTTP_201_CREATED)
async def create_contract(
    request: CreateContractRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """Create a placeholder contract in generating status."""
    return await controller.create_contract(
        prompt=request.prompt,
        owner_id=request.owner_id,
        owner_name=request.owner_name,
    )


@router.post("/{contract_id}/generate", response_model=Contract)
async def generate_contract(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """Produce the first draft and move the contract to draft."""
    return await controller.complete_initial_draft(contract_id)


@router.get("/{contract_id}", response_model=Contract)
async def get_contract(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.get_contract(contract_id)


@router.get("/{contract_id}/display", response_model=DisplayResponse)
async def get_display(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> DisplayResponse:
    """Blocks as alternating text and signature segments."""
    contract = await controller.get_contract(contract_id)
    return DisplayResponse(
        contract_id=contract.id,
        blocks=[segments_to_dict(render_for_display(block)) for block in contract.blocks],
    )


@router.get("/{contract_id}/unknowns", response_model=UnknownsResponse)
async def get_unknowns(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> UnknownsResponse:
    """Active unknowns with their category."""
    contract = await controller.get_contract(contract_id)
    return UnknownsResponse(
        contract_id=contract.id,
        unknowns=[
            UnknownItem(label=label, category=categorize_unknown(label))
            for label in contract.unknowns
        ],
        dismissed=contract.dismissed_unknowns,
    )


@router.get("/{contract_id}/pdf")
async def export_pdf(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Response:
    pdf_bytes = await controller.export_pdf(contract_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="contract-{contract_id}.pdf"'},
    )


@router.get("/{contract_id}/signing-requests", response_model=list[SigningRequestSummary])
async def list_signing_requests(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> list[SigningRequestSummary]:
    """Signing links issued for a contract, without the token values."""
    await controller.get_contract(contract_id)
    tokens = await controller.tokens.find_for_contract(contract_id)
    return [
        SigningRequestSummary(
            party=t.party,
            recipient_email=t.recipient_email,
            used=t.used,
            used_at=t.used_at,
            expires_at=t.expires_at,
            created_at=t.created_at,
        )
        for t in tokens
    ]


@router.delete("/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contract(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Response:
    await controller.delete_contract(contract_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Edits
# =============================================================================


@router.put("/{contract_id}/title", response_model=Contract)
async def update_title(
    contract_id: UUID,
    request: UpdateTitleRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.update_title(contract_id, request.title)


@router.put("/{contract_id}/blocks/{block_index}", response_model=Contract)
async def manual_edit(
    contract_id: UUID,
    block_index: int,
    request: ManualEditRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """Replace one block's text; its signature fields are carried over."""
    return await controller.manual_edit(contract_id, block_index, request.text)


@router.post("/{contract_id}/regenerate", response_model=Contract)
async def regenerate(
    contract_id: UUID,
    request: RegenerateRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """
    Regenerate the document or one block from a chat instruction.

    Signature fields on the regenerated block are discarded.
    """
    return await controller.regenerate(contract_id, request.instruction, request.block_index)


@router.post("/{contract_id}/unknowns", response_model=Contract)
async def substitute_unknowns(
    contract_id: UUID,
    request: SubstituteUnknownsRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.substitute_unknowns(
        contract_id,
        request.replacements,
        dismissed=request.dismissed,
        block_index=request.block_index,
    )


@router.put("/{contract_id}/parties", response_model=Contract)
async def update_parties(
    contract_id: UUID,
    request: UpdatePartiesRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.update_parties(contract_id, request.parties)


# =============================================================================
# Signing workflow
# =============================================================================


@router.post("/{contract_id}/signature-page", response_model=Contract)
async def prepare_signatures(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    """Add signature fields for parties that have none."""
    return await controller.prepare_signatures(contract_id)


@router.post("/{contract_id}/send", response_model=SendContractResponse)
async def send_contract(
    contract_id: UUID,
    request: SendContractRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> SendContractResponse:
    result = await controller.send_contract(contract_id, request.recipient_email, request.party)
    return SendContractResponse(
        contract=result.contract,
        signing_url=result.signing_url,
        expires_at=result.token.expires_at,
        notified=result.notified,
    )


@router.post("/{contract_id}/signatures", response_model=Contract)
async def sign_in_app(
    contract_id: UUID,
    request: SignatureRequest,
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.capture_signature(
        contract_id,
        party=request.party,
        block_index=request.block_index,
        slot_index=request.slot_index,
        image_data=request.image_data,
        signer_name=request.signer_name,
        signed_date=request.signed_date,
    )


@router.delete("/{contract_id}/signatures/{block_index}/{slot_index}", response_model=Contract)
async def redo_signature(
    contract_id: UUID,
    block_index: int,
    slot_index: int,
    party: str = Query(..., description="Party whose signature is cleared"),
    controller: ContractLifecycleController = Depends(get_controller),
) -> Contract:
    return await controller.redo_signature(contract_id, party, block_index, slot_index)


@router.post("/{contract_id}/finalize")
async def finalize(
    contract_id: UUID,
    controller: ContractLifecycleController = Depends(get_controller),
) -> dict:
    """Resend the signed PDF to every party."""
    delivered = await controller.finalize(contract_id)
    return {"contract_id": str(contract_id), "delivered": delivered}
