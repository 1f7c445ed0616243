"""Credential encryption."""

from autoflow.security.encryption import CipherVault, SealedSecret, get_cipher_vault

__all__ = ["CipherVault", "SealedSecret", "get_cipher_vault"]
