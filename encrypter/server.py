#!/usr/bin/env python
# encrypter/server.py (v1.0.0)
"""MCP tool server exposing the encryption service over stdio."""

# --- Imports ---
import asyncio
import base64
import binascii
import logging
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

# --- Dependency Imports ---
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from prometheus_client import Counter, Gauge, start_http_server
from pydantic import ValidationError

# --- Import Local Modules ---
from .config import EncrypterSettings, get_config_summary, load_settings
from .engine import GnupgEngine
from .errors import EncrypterError, EngineInitializationError, ErrorCode
from .log import setup_logging
from .service import CryptoResult, EncryptionService, EngineFactory

logger = logging.getLogger(__name__)


# --- Metrics Initialization ---
TOOL_CALLS = Counter('encrypter_tool_calls_total', 'Total encrypter MCP tool calls', ['tool_name', 'status'])
TOOL_DURATION = Gauge('encrypter_tool_duration_seconds', 'Duration of last encrypter MCP tool call', ['tool_name'])
TOOLS = ["pgp_encrypt", "pgp_decrypt"]
for tool in TOOLS:
    TOOL_CALLS.labels(tool_name=tool, status='success'); TOOL_CALLS.labels(tool_name=tool, status='failure'); TOOL_DURATION.labels(tool_name=tool).set(0)

def metrics_increment_call(tool_name: str, success: bool = True):
    TOOL_CALLS.labels(tool_name=tool_name, status='success' if success else 'failure').inc()

def metrics_set_last_duration(tool_name: str, duration: float):
    TOOL_DURATION.labels(tool_name=tool_name).set(duration)


# --- MCP Server ---
mcp = FastMCP("EncrypterService")

# --- Service State ---
_settings: Optional[EncrypterSettings] = None
_service: Optional[EncryptionService] = None
_engine_factory: Optional[EngineFactory] = None


def _default_engine_factory(settings: EncrypterSettings) -> EngineFactory:
    def _open(home: Path):
        return GnupgEngine.open(home, gpg_binary=settings.GPG_BINARY, armor=settings.GPG_ARMOR)
    return _open


def configure(settings: EncrypterSettings, engine_factory: Optional[EngineFactory] = None) -> EncryptionService:
    """Builds the shared service. Raises EngineInitializationError."""
    global _settings, _service, _engine_factory
    factory = engine_factory or _default_engine_factory(settings)
    service = EncryptionService(
        settings.GPG_RECIPIENT,
        settings.GPG_PASSPHRASE.get_secret_value(),
        settings.GNUPG_HOME,
        logger,
        engine_factory=factory,
    )
    _settings, _service, _engine_factory = settings, service, factory
    logger.info("Encryption service configured.", extra={"recipient": settings.GPG_RECIPIENT, "signs": service.signs})
    return service


def _get_service(passphrase: Optional[str] = None) -> EncryptionService:
    if _service is None or _settings is None: raise EncrypterError("Encryption service is not configured.", code=ErrorCode.INTERNAL_ERROR)
    if passphrase is None: return _service
    # A caller-supplied passphrase gets its own handle on the same keyring
    return EncryptionService(_settings.GPG_RECIPIENT, passphrase, _settings.GNUPG_HOME, logger, engine_factory=_engine_factory)


def _unwrap(result: CryptoResult) -> bytes:
    if not result: raise EncrypterError(result.message, code=result.error)
    return result.data


# --- Tool Wrapper ---
@asynccontextmanager
async def _tool_wrapper(tool_name: str, **kwargs):
    """Wrapper for metrics, logging and error mapping."""
    log_extra = {"tool_name": tool_name} | kwargs
    logger.debug("Tool execution starting.", extra=log_extra)
    start_time = time.monotonic(); success = False
    error_code = ErrorCode.INTERNAL_ERROR; error_msg = "An unexpected internal server error occurred."
    try:
        yield
        success = True
    except EncrypterError as e: error_code = e.code; error_msg = e.message; logger.warning(f"Tool '{tool_name}' failed: {error_msg}", extra=log_extra | {"code": error_code.value})
    except Exception: logger.error("Tool fail: Unexpected error.", extra=log_extra, exc_info=True)
    finally:
        duration = time.monotonic() - start_time; metrics_set_last_duration(tool_name, duration); metrics_increment_call(tool_name, success=success)
        log_extra_final = log_extra | {"duration_s": round(duration, 3), "success": success}
        if success: logger.info(f"Tool '{tool_name}' success.", extra=log_extra_final)
        else: logger.info(f"Tool '{tool_name}' final status: FAILED.", extra=log_extra_final | {"error_code": error_code.value})
    if not success: raise ToolError(f"{error_code.value}: {error_msg}")


# --- MCP Tools ---
@mcp.tool()
async def pgp_encrypt(content_base64: str) -> str:
    """ Base64 decodes and encrypts content for the configured recipient. Returns the armored envelope (base64 if binary). """
    async with _tool_wrapper("pgp_encrypt"):
        try: plaintext_bytes = base64.b64decode(content_base64, validate=True)
        except binascii.Error as e: raise EncrypterError("Invalid base64 encoding.", code=ErrorCode.INVALID_INPUT) from e
        service = _get_service()
        # GnuPG call blocks, run in thread
        ciphertext = _unwrap(await asyncio.to_thread(service.encrypt, plaintext_bytes))
        if _settings.GPG_ARMOR: return ciphertext.decode("ascii")
        return base64.b64encode(ciphertext).decode("ascii")


@mcp.tool()
async def pgp_decrypt(ciphertext: str, passphrase: Optional[str] = None) -> str:
    """ Decrypts an envelope addressed to the configured recipient. Returns the plaintext Base64 encoded. """
    async with _tool_wrapper("pgp_decrypt", passphrase_supplied=passphrase is not None):
        if ciphertext.lstrip().startswith("-----BEGIN PGP"): payload = ciphertext
        else:
            try: payload = base64.b64decode(ciphertext, validate=True)
            except binascii.Error as e: raise EncrypterError("Ciphertext is neither armored nor valid base64.", code=ErrorCode.INVALID_INPUT) from e
        service = _get_service(passphrase)
        plaintext = _unwrap(await asyncio.to_thread(service.decrypt, payload))
        return base64.b64encode(plaintext).decode("ascii")


# --- Main Execution ---
def main():
    try: settings = load_settings()
    except ValidationError as e:
        setup_logging("INFO").critical(f"Configuration validation errors:\n{e}")
        sys.exit(1)
    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting Encrypter MCP Server (v1.0.0) with configuration.", extra={"config": get_config_summary(settings)})

    # --- Start Prometheus HTTP Server ---
    if settings.ENABLE_METRICS:
        try: start_http_server(settings.METRICS_PORT); logger.info(f"Prometheus server started: {settings.METRICS_PORT}")
        except OSError: logger.error("Failed start Prometheus server.", exc_info=True)
    else: logger.warning("Metrics endpoint disabled.")

    # --- Initialize GPG ---
    try: configure(settings)
    except EngineInitializationError as e: logger.critical(f"GPG setup failed: {e.message}. Exiting."); sys.exit(1)

    try: mcp.run()
    except KeyboardInterrupt: logger.info("KeyboardInterrupt received.")
    finally: logger.info("Encrypter MCP Server process exiting.")


if __name__ == "__main__":
    main()
