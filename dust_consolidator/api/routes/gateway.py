"""Cross-chain gateway API routes.

The bridge relayer, identified by the operator header, posts inbound
deliveries here; the admin manages the trusted-sender allow-list.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dust_consolidator.api.dependencies import get_caller, get_gateway
from dust_consolidator.api.schemas import (
    InboundMessageRequest,
    JobResponse,
    TrustedSenderRequest,
    TrustedSendersResponse,
)
from dust_consolidator.core.exceptions import ValidationError
from dust_consolidator.models.messages import InboundMessage, TokenAmount
from dust_consolidator.services.gateway import CrossChainGateway


router = APIRouter(prefix="/v1/gateway", tags=["gateway"])


@router.post("/messages", response_model=JobResponse)
async def receive_message(
    body: InboundMessageRequest,
    gateway: CrossChainGateway = Depends(get_gateway),
    caller: str | None = Depends(get_caller),
) -> JobResponse:
    try:
        data = bytes.fromhex(body.data.removeprefix("0x"))
    except ValueError as e:
        raise ValidationError("data must be hex", field="data") from e

    message = InboundMessage(
        message_id=body.message_id,
        source_chain_selector=body.source_chain_selector,
        sender=body.sender,
        data=data,
        token_amounts=tuple(TokenAmount(token=t.token, amount=t.amount) for t in body.token_amounts),
    )
    return JobResponse.from_job(await gateway.receive(message, caller=caller))


@router.get("/senders", response_model=TrustedSendersResponse)
async def list_senders(gateway: CrossChainGateway = Depends(get_gateway)) -> TrustedSendersResponse:
    return TrustedSendersResponse(
        trusted_senders={str(k): v for k, v in gateway.trusted_senders.items()}
    )


@router.put("/senders/{chain_selector}", response_model=TrustedSendersResponse)
async def set_sender(
    chain_selector: int,
    body: TrustedSenderRequest,
    gateway: CrossChainGateway = Depends(get_gateway),
    caller: str | None = Depends(get_caller),
) -> TrustedSendersResponse:
    gateway.set_trusted_sender(chain_selector, body.sender, caller=caller)
    return TrustedSendersResponse(
        trusted_senders={str(k): v for k, v in gateway.trusted_senders.items()}
    )
