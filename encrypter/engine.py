# encrypter/engine.py (v1.0.0)
"""OpenPGP engine capability and its python-gnupg implementation.

The service talks to an engine through the :class:`CryptoEngine` protocol:
key registration, the crypto operations themselves and key enumeration.
:class:`GnupgEngine` is the production engine. Each instance is bound to one
key-home directory, passed to gpg as ``--homedir``; the process environment
is never touched, so engines for different keyrings can live side by side.

Registered keys accumulate on a handle until :meth:`CryptoEngine.clear_keys`
is called, mirroring the stateful engines this interface was modelled on.

gpg-agent caches unlocked secret keys. Before every operation that needs a
passphrase the engine makes the agent forget the cached passphrases of the
keys involved, so each call has to unlock the key again.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import gnupg

from .errors import CryptoOperationError, EncrypterError, EngineInitializationError, KeyResolutionError

logger = logging.getLogger(__name__)

Data = Union[bytes, str]


# --- Key Records ---
@dataclass(frozen=True)
class SubkeyRecord:
    fingerprint: str
    can_encrypt: bool = False
    can_sign: bool = False


@dataclass(frozen=True)
class KeyRecord:
    """One key in the keyring. The primary key is listed as the first subkey."""
    fingerprint: str
    uids: List[str] = field(default_factory=list)
    subkeys: List[SubkeyRecord] = field(default_factory=list)

    @classmethod
    def from_gnupg(cls, key: Dict[str, Any]) -> "KeyRecord":
        """Builds a record from a python-gnupg ``list_keys`` entry."""
        # Lower-case capability letters are the key's own; upper-case ones summarize the whole key.
        primary_cap = key.get("cap", "") or ""
        subkeys = [SubkeyRecord(key["fingerprint"], can_encrypt="e" in primary_cap, can_sign="s" in primary_cap)]
        for sub in key.get("subkeys", []):
            # [keyid, capabilities, fingerprint, (keygrip)]
            cap = sub[1] or ""
            subkeys.append(SubkeyRecord(sub[2] or "", can_encrypt="e" in cap, can_sign="s" in cap))
        return cls(fingerprint=key["fingerprint"], uids=list(key.get("uids", [])), subkeys=subkeys)


@dataclass(frozen=True)
class Plaintext:
    data: bytes
    signer_fingerprint: Optional[str] = None


# --- Engine Capability ---
class CryptoEngine(Protocol):
    def set_error_mode(self, raise_on_error: bool) -> None: ...
    def add_encryption_key(self, key_id: str) -> None: ...
    def add_signing_key(self, key_id: str, passphrase: str) -> None: ...
    def add_decryption_key(self, key_id: str, passphrase: str) -> None: ...
    def clear_keys(self) -> None: ...
    def encrypt(self, data: Data) -> bytes: ...
    def encrypt_and_sign(self, data: Data) -> bytes: ...
    def decrypt(self, data: Data) -> Plaintext: ...
    def enumerate_keys(self, pattern: str = "") -> List[KeyRecord]: ...


# --- python-gnupg Engine ---
class GnupgEngine:
    """python-gnupg backed engine, bound to a single key-home."""

    def __init__(self, gpg: gnupg.GPG, keyring_home: Path, armor: bool = True, agent_binary: str = "gpg-connect-agent"):
        self._gpg = gpg
        self.keyring_home = keyring_home
        self.armor = armor
        self.agent_binary = agent_binary
        self.raise_on_error = False
        self._encrypt_keys: Dict[str, None] = {} # Ordered set
        self._sign_keys: Dict[str, str] = {}
        self._decrypt_keys: Dict[str, str] = {}
        self._keygrips: Dict[str, List[str]] = {} # Secret key id -> agent keygrips

    @classmethod
    def open(cls, keyring_home: Union[str, Path], gpg_binary: Optional[Union[str, Path]] = None, armor: bool = True) -> "GnupgEngine":
        """Creates an engine handle for ``keyring_home``. Raises EngineInitializationError."""
        home = Path(keyring_home).expanduser()
        log_extra = {"gnupghome": str(home), "gpgbinary": str(gpg_binary) if gpg_binary else None}
        # python-gnupg would create a missing home; a missing keyring is an error here
        if not home.is_dir():
            logger.error("GnuPG home directory does not exist.", extra=log_extra)
            raise EngineInitializationError(f"GnuPG home '{home}' is not an existing directory.")
        gpg_kwargs = {"gnupghome": str(home)}
        agent_binary = "gpg-connect-agent"
        if gpg_binary:
            gpg_kwargs["gpgbinary"] = str(gpg_binary)
            agent_binary = str(Path(gpg_binary).with_name("gpg-connect-agent"))
        try:
            gpg = gnupg.GPG(**gpg_kwargs)
            gpg.encoding = "utf-8"
            version = gpg.version
        except (OSError, ValueError) as e:
            logger.error("Failed to start GnuPG.", extra=log_extra, exc_info=True)
            raise EngineInitializationError(f"GnuPG initialization failed: {e}") from e
        if not version:
            raise EngineInitializationError("gpg.version returned None.")
        logger.info(f"GnuPG engine opened. Version: {version}", extra=log_extra)
        return cls(gpg, home, armor=armor, agent_binary=agent_binary)

    def set_error_mode(self, raise_on_error: bool) -> None:
        self.raise_on_error = raise_on_error

    def _fail(self, error: EncrypterError):
        """Raises ``error`` or, with exceptions switched off, logs it and returns."""
        if self.raise_on_error: raise error
        logger.warning(f"GnuPG engine error suppressed: {error.message}", extra={"code": error.code.value})

    # --- Key Registration ---
    def _secret_keygrips(self, key_id: str) -> Optional[List[str]]:
        """Keygrips of every secret (sub)key matching ``key_id``; None if there is no secret key."""
        keys = self._gpg.list_keys(secret=True, keys=[key_id]) if key_id else []
        if not keys: return None
        keygrips = []
        for key in keys:
            if key.get("keygrip"): keygrips.append(key["keygrip"])
            # [keyid, capabilities, fingerprint, keygrip]
            keygrips.extend(sub[3] for sub in key.get("subkeys", []) if len(sub) > 3 and sub[3])
        return keygrips

    def add_encryption_key(self, key_id: str) -> None:
        if not key_id or not self._gpg.list_keys(keys=[key_id]):
            return self._fail(KeyResolutionError(f"No public key found for '{key_id}'."))
        self._encrypt_keys[key_id] = None

    def add_signing_key(self, key_id: str, passphrase: str) -> None:
        keygrips = self._secret_keygrips(key_id)
        if keygrips is None:
            return self._fail(KeyResolutionError(f"No secret signing key found for '{key_id}'."))
        self._sign_keys.pop(key_id, None)
        self._sign_keys[key_id] = passphrase
        self._keygrips[key_id] = keygrips

    def add_decryption_key(self, key_id: str, passphrase: str) -> None:
        keygrips = self._secret_keygrips(key_id)
        if keygrips is None:
            return self._fail(KeyResolutionError(f"No secret decryption key found for '{key_id}'."))
        self._decrypt_keys[key_id] = passphrase
        self._keygrips[key_id] = keygrips

    def clear_keys(self) -> None:
        self._encrypt_keys.clear(); self._sign_keys.clear(); self._decrypt_keys.clear(); self._keygrips.clear()

    # --- Agent Cache ---
    def _forget_passphrases(self, key_ids) -> None:
        """Clears gpg-agent's cached passphrases for the secret keys of ``key_ids``.

        Raises CryptoOperationError if the cache cannot be cleared.
        """
        keygrips = [grip for key_id in key_ids for grip in self._keygrips.get(key_id, [])]
        if not keygrips: return
        cmd = [self.agent_binary, "--homedir", str(self.keyring_home)]
        cmd += [f"CLEAR_PASSPHRASE --mode=normal {grip}" for grip in dict.fromkeys(keygrips)]
        cmd.append("/bye")
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            logger.debug("gpg-connect-agent could not be started.", exc_info=True)
            raise CryptoOperationError(f"Cannot clear gpg-agent passphrase cache: {e}", status="agent unavailable") from e
        errors = [line for line in proc.stdout.splitlines() if line.startswith("ERR")]
        if proc.returncode or errors:
            logger.debug("gpg-agent refused to clear passphrases.", extra={"agent_stdout": proc.stdout, "agent_stderr": proc.stderr})
            raise CryptoOperationError("Cannot clear gpg-agent passphrase cache.", status=(errors or [f"exit {proc.returncode}"])[0])

    # --- Operations ---
    def _check_result(self, operation: str, result: Any, require_data: bool = True) -> bool:
        """Checks a gnupg result; False (or an exception) on failure."""
        status = getattr(result, "status", None) or f"{operation} failed"
        stderr = getattr(result, "stderr", "") or ""
        if not getattr(result, "ok", False):
            logger.debug(f"GPG {operation} failed", extra={"gpg_status": status, "gpg_stderr": stderr, "operation": operation})
            details = f"{status}\n{stderr}".lower()
            if "bad passphrase" in details: message = f"GPG {operation} failed: bad passphrase."
            elif "missing passphrase" in details or "no passphrase given" in details or "pinentry" in details: message = f"GPG {operation} failed: passphrase required."
            elif "no secret key" in details: message = f"GPG {operation} failed: secret key unavailable."
            elif "key expired" in details: message = f"GPG {operation} failed: key expired."
            else: message = f"GPG {operation} failed (Status: '{status}')."
            self._fail(CryptoOperationError(message, status=status))
            return False
        if require_data and not getattr(result, "data", None):
            self._fail(CryptoOperationError(f"GPG {operation} produced no output.", status=status))
            return False
        return True

    def _encrypt(self, operation: str, data: Data, sign: Optional[str] = None, passphrase: Optional[str] = None) -> bytes:
        if not self._encrypt_keys:
            self._fail(KeyResolutionError("No encryption key registered."))
            return b""
        result = self._gpg.encrypt(
            data,
            list(self._encrypt_keys),
            sign=sign,
            passphrase=passphrase or None,
            armor=self.armor,
            always_trust=True # Registered keys were looked up in our own keyring
        )
        return result.data if self._check_result(operation, result) else b""

    def encrypt(self, data: Data) -> bytes:
        return self._encrypt("encrypt", data)

    def encrypt_and_sign(self, data: Data) -> bytes:
        if not self._sign_keys:
            self._fail(KeyResolutionError("No signing key registered."))
            return b""
        sign_key = next(reversed(self._sign_keys)) # gpg signs with one key; the latest registration wins
        self._forget_passphrases([sign_key])
        return self._encrypt("encrypt_and_sign", data, sign=sign_key, passphrase=self._sign_keys[sign_key])

    def decrypt(self, data: Data) -> Plaintext:
        if not self._decrypt_keys:
            self._fail(KeyResolutionError("No decryption key registered."))
            return Plaintext(b"")
        result = None
        for passphrase in dict.fromkeys(self._decrypt_keys.values()):
            self._forget_passphrases(self._decrypt_keys)
            result = self._gpg.decrypt(data, passphrase=passphrase or None)
            if result.ok: break
        if not self._check_result("decrypt", result, require_data=False):
            return Plaintext(b"")
        signer = result.fingerprint if getattr(result, "valid", False) else None
        return Plaintext(result.data or b"", signer_fingerprint=signer)

    def enumerate_keys(self, pattern: str = "") -> List[KeyRecord]:
        return [KeyRecord.from_gnupg(key) for key in self._gpg.list_keys(keys=pattern or None)]
