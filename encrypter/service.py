# encrypter/service.py (v1.0.0)
"""EncryptionService: encrypt/decrypt for one recipient against one keyring.

Construction binds an engine handle to the key-home and fails loudly if that
is impossible. After that, runtime failures never raise: they are logged once
through the injected logger and returned as a failed :class:`CryptoResult`.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .engine import CryptoEngine, Data, GnupgEngine
from .errors import EncrypterError, EngineInitializationError, ErrorCode

module_logger = logging.getLogger(__name__)

EngineFactory = Callable[[Path], CryptoEngine]


@dataclass(frozen=True)
class CryptoResult:
    """Outcome of an encrypt or decrypt call. Falsy on failure."""
    ok: bool
    data: Optional[bytes] = None
    error: Optional[ErrorCode] = None
    message: str = ""
    signer_fingerprint: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, data: bytes, signer_fingerprint: Optional[str] = None) -> "CryptoResult":
        return cls(ok=True, data=data, signer_fingerprint=signer_fingerprint)

    @classmethod
    def failure(cls, error: ErrorCode, message: str) -> "CryptoResult":
        return cls(ok=False, error=error, message=message)


def _to_bytes(data: Data) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class EncryptionService:
    """Encrypts for, and decrypts as, a single recipient.

    With a non-empty passphrase, :meth:`encrypt` also signs, using the key
    found by :meth:`signing_fingerprint`. An empty passphrase gives plain
    encryption.
    """

    def __init__(self, recipient: str, passphrase: Optional[str], keyring_home: Union[str, Path],
                 logger: logging.Logger, engine_factory: EngineFactory = GnupgEngine.open):
        if not recipient: raise ValueError("recipient must be a non-empty identity string.")
        self._recipient = recipient
        self._passphrase = passphrase or ""
        self._keyring_home = Path(keyring_home)
        self._logger = logger
        try:
            self._engine = engine_factory(self._keyring_home)
        except EngineInitializationError:
            raise
        except Exception as e:
            raise EngineInitializationError(f"Cannot create OpenPGP engine for '{self._keyring_home}': {e}") from e
        self._engine.set_error_mode(raise_on_error=True)
        module_logger.debug("Encryption service ready.", extra={"recipient": recipient, "gnupghome": str(self._keyring_home)})

    @property
    def recipient(self) -> str:
        return self._recipient

    @property
    def keyring_home(self) -> Path:
        return self._keyring_home

    @property
    def signs(self) -> bool:
        """True when encrypt() produces signed envelopes."""
        return bool(self._passphrase)

    def _contain(self, operation: str, error: Exception) -> CryptoResult:
        """Logs ``error`` once and turns it into a failed result."""
        if isinstance(error, EncrypterError):
            code, message = error.code, error.message
        else:
            code, message = ErrorCode.INTERNAL_ERROR, f"Unexpected {type(error).__name__}: {error}"
        self._logger.error(f"{operation} failed: {message}", extra={"recipient": self._recipient, "code": code.value})
        return CryptoResult.failure(code, message)

    def encrypt(self, plaintext: Data) -> CryptoResult:
        try:
            self._engine.add_encryption_key(self._recipient)
            if self._passphrase:
                fingerprint = self.signing_fingerprint()
                self._engine.add_signing_key(fingerprint, self._passphrase)
                return CryptoResult.success(self._engine.encrypt_and_sign(_to_bytes(plaintext)), signer_fingerprint=fingerprint)
            return CryptoResult.success(self._engine.encrypt(_to_bytes(plaintext)))
        except Exception as e:
            return self._contain("encrypt", e)

    def decrypt(self, ciphertext: Data) -> CryptoResult:
        try:
            self._engine.add_decryption_key(self._recipient, self._passphrase)
            plaintext = self._engine.decrypt(ciphertext)
            return CryptoResult.success(plaintext.data, signer_fingerprint=plaintext.signer_fingerprint)
        except Exception as e:
            return self._contain("decrypt", e)

    def signing_fingerprint(self) -> str:
        """Fingerprint of the last encryption-capable subkey in the keyring.

        Every key is considered, not only the recipient's, and the last match
        wins. With more than one encryption-capable subkey in the keyring the
        choice depends on enumeration order. Returns "" (after logging) if the
        keyring cannot be listed.
        """
        try:
            fingerprint = ""
            for record in self._engine.enumerate_keys(""):
                for subkey in record.subkeys:
                    if subkey.can_encrypt:
                        # TODO: match the record's uids against the recipient before picking it
                        fingerprint = subkey.fingerprint
            return fingerprint
        except Exception as e:
            self._contain("key enumeration", e)
            return ""
