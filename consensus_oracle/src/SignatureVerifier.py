"""SignatureVerifier: Collaborator that authenticates attestation payloads.

The engine never inspects signatures itself; it asks a verifier and rejects
the attestation when the answer is False.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError

logger = logging.getLogger(__name__)


class SignatureVerifier(ABC):
    """Abstract base class for signature verification."""

    @abstractmethod
    def verify(self, operator_id: str, payload: bytes, signature: bytes) -> bool:
        """Check that ``signature`` over ``payload`` was produced by ``operator_id``.

        :param operator_id: Claimed signer.
        :param payload: Canonical attestation payload.
        :param signature: Signature blob.
        :returns: True if the signature is valid for the operator.
        """
        pass


class EthSignatureVerifier(SignatureVerifier):
    """Verifies EIP-191 personal-message signatures.

    Operator ids are Ethereum addresses; the signer recovered from the
    signature must match the operator id (case-insensitive).

    .. code-block:: python

        >>> acct = Account.create()
        >>> payload = b"hello"
        >>> sig = acct.sign_message(encode_defunct(primitive=payload)).signature
        >>> EthSignatureVerifier().verify(acct.address, payload, bytes(sig))
        True
    """

    def verify(self, operator_id: str, payload: bytes, signature: bytes) -> bool:
        if not signature:
            return False
        try:
            signer = Account.recover_message(
                encode_defunct(primitive=payload), signature=signature
            )
        except (BadSignature, ValidationError, ValueError, TypeError) as e:
            logger.debug(f"Signature recovery failed for {operator_id}: {e}")
            return False
        return signer.lower() == operator_id.lower()
