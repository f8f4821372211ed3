"""
Cryptographic Signing

Ed25519 signatures for resolution reports. A resolver signs the
canonical form of what it observed; the gateway verifies it against
the resolver's registered public key before anything is recorded.

Keys and signatures travel as base64 strings.
"""

import base64
from typing import Any, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .hasher import Hasher


class Signer:
    """Ed25519 signing for resolver accountability."""

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")
        return private_b64, public_b64

    @staticmethod
    def public_key_of(private_key_b64: str) -> str:
        """Base64 public key matching a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """
        Sign a message with Ed25519.

        Returns:
            Base64-encoded signature (raw 64 bytes, not the signed message)
        """
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """
        Verify an Ed25519 signature.

        Returns False for a wrong signature and for malformed keys or
        signatures alike.
        """
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(message.encode("utf-8"), base64.b64decode(signature_b64))
            return True
        except (BadSignatureError, ValueError, TypeError):
            return False

    @staticmethod
    def sign_payload(payload: dict[str, Any], private_key_b64: str) -> str:
        """Sign the canonical JSON of a payload."""
        return Signer.sign(Hasher.canonicalize(payload), private_key_b64)

    @staticmethod
    def verify_payload(payload: dict[str, Any], signature_b64: str, public_key_b64: str) -> bool:
        return Signer.verify(Hasher.canonicalize(payload), signature_b64, public_key_b64)
