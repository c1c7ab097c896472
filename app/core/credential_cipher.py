from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

ENVELOPE_PREFIX = "enc:v1"


@dataclass(frozen=True)
class OpenedCredential:
    plaintext: str | None
    # True when the stored value predates encryption and should be sealed again.
    needs_reseal: bool = False


class CredentialCipher:
    """Fernet envelope for credentials persisted in the database (the iList auth token)."""

    def __init__(self, *, key_id: str, fernet_key: str) -> None:
        self.key_id = key_id
        self._fernet = Fernet(fernet_key.encode("utf-8"))

    @classmethod
    def from_settings(cls, cfg: object) -> CredentialCipher:
        local_key = (getattr(cfg, "token_crypto_local_key", None) or "").strip()
        key_path = (getattr(cfg, "token_crypto_local_key_path", None) or "").strip()
        if not local_key and key_path:
            local_key = Path(key_path).read_text(encoding="utf-8").strip()
        if not local_key:
            raise RuntimeError("credential cipher key material is not configured")

        key_id = (getattr(cfg, "token_crypto_kms_key_id", None) or "").strip() or "local-dev"
        return cls(key_id=key_id, fernet_key=local_key)

    @staticmethod
    def is_sealed(value: str | None) -> bool:
        return bool(value and value.startswith(f"{ENVELOPE_PREFIX}:"))

    def seal(self, plaintext: str | None) -> str | None:
        if plaintext is None or self.is_sealed(plaintext):
            return plaintext

        ciphertext = self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")
        return f"{ENVELOPE_PREFIX}:{self.key_id}:{ciphertext}"

    def open(self, stored_value: str | None) -> OpenedCredential:
        if stored_value is None:
            return OpenedCredential(plaintext=None)
        if not self.is_sealed(stored_value):
            return OpenedCredential(plaintext=stored_value, needs_reseal=True)

        try:
            _, _, _key_id, ciphertext = stored_value.split(":", 3)
        except ValueError as exc:
            raise ValueError("malformed credential envelope") from exc

        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("unable to decrypt credential envelope") from exc

        return OpenedCredential(plaintext=plaintext)
