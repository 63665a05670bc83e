"""Cross-chain message gateway.

Inbound: the relayer posting a delivery must be an operator. Each delivery is
verified against a per-chain trusted sender, must carry the tokens its
``{jobId, asset, amount}`` payload declares, and is forwarded to the
orchestrator as a receipt recorded by that relayer.

Outbound: messages carrying bridged tokens plus the same payload are built
for the destination chain and handed to a ``MessageTransport``.
"""

from __future__ import annotations

from typing import Protocol

from dust_consolidator.core.access import AccessControl, normalize_address
from dust_consolidator.core.chains import get_chain, get_chain_by_selector
from dust_consolidator.core.constants import ZERO_ADDRESS
from dust_consolidator.core.exceptions import (
    ConfigurationError,
    UnsupportedChainError,
    UntrustedSenderError,
    ValidationError,
)
from dust_consolidator.core.logging import get_logger
from dust_consolidator.models.job import ConsolidationJob
from dust_consolidator.models.messages import (
    InboundMessage,
    JobPayload,
    OutboundMessage,
    TokenAmount,
)
from dust_consolidator.orchestration.orchestrator import JobOrchestrator


logger = get_logger(__name__)


class MessageTransport(Protocol):
    """Raw bridge transport; returns the bridge-assigned message id."""

    async def send(self, message: OutboundMessage) -> str: ...


class CrossChainGateway:
    """Trusted-sender gate between the bridge and the orchestrator.

    Args:
        orchestrator: Receives verified receipts.
        admin: Identity allowed to manage trusted senders.
        receiver: Consolidator address on the destination chain.
        trusted_senders: Source chain selector -> trusted sender address.
        transport: Outbound transport; outbound dispatch is disabled without one.
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        admin: str,
        receiver: str,
        trusted_senders: dict[int, str] | None = None,
        transport: MessageTransport | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._access = AccessControl(admin)
        self.receiver = normalize_address(receiver, "receiver")
        self._transport = transport
        self._trusted: dict[int, str] = {}
        self._processed: set[str] = set()
        for selector, sender in (trusted_senders or {}).items():
            self._set_trusted(int(selector), sender)

    # -------------------------------------------------------------------------
    # Trusted senders
    # -------------------------------------------------------------------------

    def trusted_sender(self, chain_selector: int) -> str | None:
        return self._trusted.get(chain_selector)

    @property
    def trusted_senders(self) -> dict[int, str]:
        return dict(self._trusted)

    def set_trusted_sender(self, chain_selector: int, sender: str | None, caller: str | None) -> None:
        """Trust ``sender`` for ``chain_selector``; None removes the entry."""
        self._access.require_admin(caller, "manage trusted senders")
        if sender is None:
            self._trusted.pop(chain_selector, None)
            logger.info("Trusted sender removed", chain_selector=chain_selector)
            return
        self._set_trusted(chain_selector, sender)
        logger.info("Trusted sender set", chain_selector=chain_selector, sender=self._trusted[chain_selector])

    def _set_trusted(self, chain_selector: int, sender: str) -> None:
        if get_chain_by_selector(chain_selector) is None:
            raise UnsupportedChainError(
                f"unknown chain selector {chain_selector}", chain_id=chain_selector
            )
        self._trusted[chain_selector] = normalize_address(sender, "sender")

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def receive(self, message: InboundMessage, caller: str | None) -> ConsolidationJob:
        """Verify, decode and forward a bridge delivery.

        Args:
            message: Delivery as reported by the bridge.
            caller: Relayer posting the delivery; must be an operator.

        Raises:
            UnauthorizedError: Caller is not an operator.
            UnsupportedChainError: Unknown source chain selector.
            UntrustedSenderError: Sender is not trusted for its chain.
            ValidationError: Malformed payload, missing or mismatched tokens, replay.
        """
        relayer = self._orchestrator.require_operator(caller, "deliver bridge messages")
        chain = get_chain_by_selector(message.source_chain_selector)
        if chain is None:
            raise UnsupportedChainError(
                f"unknown source chain selector {message.source_chain_selector}",
                chain_id=message.source_chain_selector,
            )

        trusted = self._trusted.get(message.source_chain_selector)
        sender = normalize_address(message.sender, "sender")
        if trusted is None or sender != trusted:
            logger.warning(
                "Rejected message from untrusted sender",
                message_id=message.message_id,
                chain=chain.name,
                sender=sender,
            )
            raise UntrustedSenderError(
                f"sender {sender} is not trusted on {chain.name}",
                chain_id=chain.chain_id,
                sender=sender,
            )

        if message.message_id in self._processed:
            raise ValidationError(
                f"message {message.message_id} already processed",
                field="message_id",
                value=message.message_id,
            )

        if not message.token_amounts:
            raise ValidationError(
                f"message {message.message_id} delivered no tokens", field="token_amounts"
            )

        payload = JobPayload.decode(message.data)
        delivered = sum(
            t.amount
            for t in message.token_amounts
            if normalize_address(t.token, "token") == payload.asset
        )
        if delivered != payload.amount:
            raise ValidationError(
                f"payload declares {payload.amount} but {delivered} was delivered",
                field="amount",
                value=payload.amount,
            )

        # Claimed before awaiting so a concurrent redelivery is rejected
        self._processed.add(message.message_id)
        try:
            job = await self._orchestrator.record_receipt(
                payload.job_id,
                chain.chain_id,
                payload.asset,
                payload.amount,
                caller=relayer,
            )
        except Exception:
            self._processed.discard(message.message_id)
            raise
        logger.info(
            "Inbound message processed",
            message_id=message.message_id,
            relayer=relayer,
            job_id=payload.job_id,
            chain=chain.name,
            amount=payload.amount,
        )
        return job

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def build_message(
        self,
        job_id: str,
        asset: str,
        amount: int,
        fee_token: str = ZERO_ADDRESS,
    ) -> OutboundMessage:
        """Build the message bridging ``amount`` of ``asset`` for a job."""
        destination = get_chain(self._orchestrator.destination_chain_id)
        if destination is None:
            raise ConfigurationError("destination chain is not registered", setting="destination_chain_id")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount", value=amount)

        asset = normalize_address(asset, "asset")
        payload = JobPayload(job_id=job_id, asset=asset, amount=amount)
        return OutboundMessage(
            destination_chain_selector=destination.ccip_selector,
            receiver=self.receiver,
            data=payload.encode(),
            token_amounts=(TokenAmount(token=asset, amount=amount),),
            fee_token=normalize_address(fee_token, "fee_token"),
        )

    async def dispatch(
        self,
        job_id: str,
        asset: str,
        amount: int,
        fee_token: str = ZERO_ADDRESS,
    ) -> str:
        """Build and send an outbound message; returns the message id."""
        if self._transport is None:
            raise ConfigurationError("no message transport configured", setting="transport")
        message = self.build_message(job_id, asset, amount, fee_token)
        message_id = await self._transport.send(message)
        logger.info("Outbound message dispatched", job_id=job_id, message_id=message_id, amount=amount)
        return message_id
