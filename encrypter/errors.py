# encrypter/errors.py (v1.0.0)
"""Error taxonomy for the OpenPGP encrypter."""

from enum import Enum
from typing import Optional


# --- Error Codes Enum ---
class ErrorCode(str, Enum):
    ENGINE_INIT_ERROR = "ENGINE_INIT_ERROR"; KEY_RESOLUTION_ERROR = "KEY_RESOLUTION_ERROR"
    CRYPTO_ERROR = "CRYPTO_ERROR"; INVALID_INPUT = "INVALID_INPUT"; INTERNAL_ERROR = "INTERNAL_ERROR"


class EncrypterError(Exception):
    """Base error. Carries a message and an ErrorCode."""
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None: self.code = code


class EngineInitializationError(EncrypterError):
    """The engine could not be created or bound to the key-home. Always propagated."""
    code = ErrorCode.ENGINE_INIT_ERROR


class KeyResolutionError(EncrypterError):
    """No usable encryption, signing or decryption key for the given identity."""
    code = ErrorCode.KEY_RESOLUTION_ERROR


class CryptoOperationError(EncrypterError):
    """The engine failed to encrypt, sign or decrypt."""
    code = ErrorCode.CRYPTO_ERROR

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status
