"""Cross-chain message envelopes and the job payload codec.

The payload travelling alongside a bridged token transfer is the ABI
encoding of ``(bytes32 jobId, address asset, uint256 amount)``; encoding
and decoding must round-trip exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from dust_consolidator.core.exceptions import ValidationError


PAYLOAD_TYPES = ["bytes32", "address", "uint256"]
PAYLOAD_SIZE = 96


@dataclass(frozen=True)
class JobPayload:
    """Job-scoped metadata carried by a cross-chain message.

    Attributes:
        job_id: 0x-prefixed 32-byte job id.
        asset: Token address on the destination chain.
        amount: Amount of ``asset`` delivered for the job.
    """

    job_id: str
    asset: str
    amount: int

    def encode(self) -> bytes:
        """ABI-encode the payload."""
        job_id = bytes.fromhex(self.job_id.removeprefix("0x"))
        if len(job_id) != 32:
            raise ValidationError("job_id must be 32 bytes", field="job_id", value=self.job_id)
        if self.amount < 0:
            raise ValidationError("amount must be non-negative", field="amount", value=self.amount)
        return encode(PAYLOAD_TYPES, [job_id, to_checksum_address(self.asset), self.amount])

    @classmethod
    def decode(cls, data: bytes) -> JobPayload:
        """Decode an ABI-encoded payload.

        Raises:
            ValidationError: If ``data`` is not a well-formed payload.
        """
        if len(data) != PAYLOAD_SIZE:
            raise ValidationError(
                f"payload must be {PAYLOAD_SIZE} bytes, got {len(data)}",
                field="data",
            )
        try:
            job_id, asset, amount = decode(PAYLOAD_TYPES, data)
        except DecodingError as e:
            raise ValidationError(f"malformed job payload: {e}", field="data") from e
        return cls(job_id="0x" + job_id.hex(), asset=to_checksum_address(asset), amount=amount)


@dataclass(frozen=True)
class TokenAmount:
    """A token transferred alongside a message."""

    token: str
    amount: int


@dataclass(frozen=True)
class InboundMessage:
    """Message delivered by the bridge on the destination chain.

    Attributes:
        message_id: Bridge-assigned message id.
        source_chain_selector: Selector of the chain the message came from.
        sender: Contract that sent the message on the source chain.
        data: ABI-encoded ``JobPayload``.
        token_amounts: Tokens delivered with the message.
    """

    message_id: str
    source_chain_selector: int
    sender: str
    data: bytes
    token_amounts: tuple[TokenAmount, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OutboundMessage:
    """Message built for dispatch toward the destination chain.

    Attributes:
        destination_chain_selector: Selector of the destination chain.
        receiver: Consolidator address on the destination chain.
        data: ABI-encoded ``JobPayload``.
        token_amounts: Tokens to bridge with the message.
        fee_token: Token paying the bridge fee (zero address = native).
    """

    destination_chain_selector: int
    receiver: str
    data: bytes
    token_amounts: tuple[TokenAmount, ...]
    fee_token: str
