"""Service-held credential management for the telemetry client"""
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.asymmetric import padding

from ucoin_rewards.config import Settings
from ucoin_rewards.errors import CredentialError

logger = logging.getLogger(__name__)

BINDING_SEPARATOR = "::service::"


class SecretEncryption:
    """Encrypts and decrypts service secrets bound to a service name"""

    @staticmethod
    def _oaep() -> padding.OAEP:
        return padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None
        )

    @classmethod
    def encrypt_secret(cls, secret: str, public_key_pem: bytes, binding: str) -> str:
        """
        Encrypt a secret for the service, binding it to a service name

        Args:
            secret: Secret value to encrypt
            public_key_pem: Service public key in PEM format
            binding: Service name the secret may be used by

        Returns:
            Hex string of encrypted secret
        """
        public_key = serialization.load_pem_public_key(public_key_pem)
        protected_secret = f"{secret}{BINDING_SEPARATOR}{binding}"
        encrypted = public_key.encrypt(protected_secret.encode(), cls._oaep())
        return encrypted.hex()

    @classmethod
    def decrypt_secret(cls, encrypted_hex: str, private_key_pem: bytes, binding: str) -> str:
        """
        Decrypt a bound secret and check it was issued for this service

        Raises:
            CredentialError: If decryption fails or the binding does not match
        """
        try:
            private_key = serialization.load_pem_private_key(private_key_pem, password=None)
            plaintext = private_key.decrypt(bytes.fromhex(encrypted_hex), cls._oaep()).decode()
        except ValueError as e:
            raise CredentialError(f"Failed to decrypt service secret: {e}")

        secret, separator, bound_to = plaintext.rpartition(BINDING_SEPARATOR)
        if not separator or bound_to != binding:
            raise CredentialError(f"Secret is not bound to service {binding!r}")
        return secret


@dataclass
class ServiceCredentials:
    """Resolved credentials used by background services"""
    github_token: Optional[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> 'ServiceCredentials':
        """
        Resolve the telemetry token from settings.

        A plain GITHUB_TOKEN wins; otherwise GITHUB_ENCRYPTED_TOKEN is
        decrypted with the key at SERVICE_PRIVATE_KEY_PATH.

        Raises:
            CredentialError: If an encrypted token cannot be decrypted
        """
        if settings.GITHUB_TOKEN:
            return cls(github_token=settings.GITHUB_TOKEN)

        if settings.GITHUB_ENCRYPTED_TOKEN:
            if not settings.SERVICE_PRIVATE_KEY_PATH:
                raise CredentialError("SERVICE_PRIVATE_KEY_PATH is required to decrypt GITHUB_ENCRYPTED_TOKEN")
            try:
                with open(settings.SERVICE_PRIVATE_KEY_PATH, 'rb') as key_file:
                    private_key_pem = key_file.read()
            except OSError as e:
                raise CredentialError(f"Cannot read service private key: {e}")

            token = SecretEncryption.decrypt_secret(
                settings.GITHUB_ENCRYPTED_TOKEN,
                private_key_pem,
                settings.SERVICE_BINDING
            )
            logger.info("Decrypted service GitHub token")
            return cls(github_token=token)

        logger.warning("No GitHub token configured, telemetry requests will be unauthenticated")
        return cls(github_token=None)
