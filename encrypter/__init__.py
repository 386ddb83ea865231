"""OpenPGP encrypt/decrypt service over a GnuPG keyring."""

from .engine import CryptoEngine, GnupgEngine, KeyRecord, Plaintext, SubkeyRecord
from .errors import CryptoOperationError, EncrypterError, EngineInitializationError, ErrorCode, KeyResolutionError
from .service import CryptoResult, EncryptionService

__version__ = "1.0.0"

__all__ = [
    "CryptoEngine", "CryptoOperationError", "CryptoResult", "EncrypterError", "EncryptionService",
    "EngineInitializationError", "ErrorCode", "GnupgEngine", "KeyRecord", "KeyResolutionError",
    "Plaintext", "SubkeyRecord",
]
