"""
EigenAI signature verification.

EigenAI signs, with EIP-191 personal-message signing, the plain concatenation

    ChainID + ModelID + FullPrompt + FullOutput

with no spaces, commas or separators, e.g.
"1gpt-oss-120b-f16Hello worldHello! How can I help?". FullPrompt is every
request message's content in order, FullOutput every choice's content.
Verification rebuilds that string and recovers the signer address from the
signature.

A bad signature is an expected outcome that must be auditable, so verification
never raises: failures come back as VerificationResult(is_valid=False, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from .messages import reconstruct_full_output, reconstruct_full_prompt
from .models import ChatMessage, CompletionResponse, Usage, VerificationRecord


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    recovered_address: str
    expected_signer: str
    reconstructed_message: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "recovered_address": self.recovered_address,
            "expected_signer": self.expected_signer,
            "reconstructed_message": self.reconstructed_message,
            "error": self.error,
        }


def signed_message(chain_id: str, model: str, prompt: str, output: str) -> str:
    return f"{chain_id}{model}{prompt}{output}"


def reconstruct_signed_message(
    request_messages: Iterable[ChatMessage],
    response: CompletionResponse,
    chain_id: str,
) -> str:
    return signed_message(
        chain_id,
        response.model,
        reconstruct_full_prompt(request_messages),
        reconstruct_full_output(response.choices),
    )


def normalize_signature(signature: str) -> str:
    signature = signature.strip()
    return signature if signature.startswith("0x") else f"0x{signature}"


def recover_signer(message: str, signature: str) -> str:
    return Account.recover_message(encode_defunct(text=message), signature=normalize_signature(signature))


def verify_text(
    chain_id: str,
    model: str,
    prompt: str,
    output: str,
    signature: str,
    expected_signer: str,
) -> VerificationResult:
    """Verify a signature against already-flattened prompt and output strings."""
    try:
        message = signed_message(chain_id, model, prompt, output)
        recovered = recover_signer(message, signature)
        return VerificationResult(
            is_valid=recovered.lower() == expected_signer.lower(),
            recovered_address=recovered,
            expected_signer=expected_signer,
            reconstructed_message=message,
        )
    except Exception as e:
        return VerificationResult(
            is_valid=False,
            recovered_address="ERROR",
            expected_signer=expected_signer,
            reconstructed_message="",
            error=str(e) or type(e).__name__,
        )


def verify_signature(
    request_messages: Iterable[ChatMessage],
    response: CompletionResponse,
    chain_id: str,
    expected_signer: str,
) -> VerificationResult:
    """
    Verify that `response` was signed by `expected_signer` for this request.

    Returns a VerificationResult; a missing or malformed signature yields
    is_valid=False with recovered_address="ERROR" and the reason in `error`.
    """
    return verify_text(
        chain_id,
        response.model,
        reconstruct_full_prompt(request_messages),
        reconstruct_full_output(response.choices),
        response.signature or "",
        expected_signer,
    )


def compute_hash(data: str) -> str:
    """keccak-256 of the UTF-8 text, 0x-prefixed hex."""
    return "0x" + keccak(text=data).hex()


def create_audit_hashes(
    request_messages: Iterable[ChatMessage],
    response: CompletionResponse,
) -> Dict[str, str]:
    """Hashes of the full prompt and full output, for storage without raw text."""
    return {
        "request_hash": compute_hash(reconstruct_full_prompt(request_messages)),
        "response_hash": compute_hash(reconstruct_full_output(response.choices)),
    }


def build_record(
    *,
    request_prompt: str,
    response_model: str,
    response_output: str,
    signature: str,
    usage: Usage,
    chain_id: str,
    expected_signer: str,
    verify: bool = True,
) -> VerificationRecord:
    """
    Build the verification record for one signed response.
    With verify=False the signer is left unchecked (recovered_signer=None).
    """
    result = None
    if verify:
        result = verify_text(
            chain_id, response_model, request_prompt, response_output, signature, expected_signer
        )
    return VerificationRecord(
        request_prompt=request_prompt,
        response_model=response_model,
        response_output=response_output,
        signature=signature,
        usage=usage,
        chain_id=chain_id,
        expected_signer=expected_signer,
        recovered_signer=result.recovered_address if result else None,
        is_valid=result.is_valid if result else False,
        error=result.error if result else None,
        request_hash=compute_hash(request_prompt),
        response_hash=compute_hash(response_output),
    )
