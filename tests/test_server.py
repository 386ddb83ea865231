"""Tests for the MCP tools, backed by the in-memory engine."""

import base64

import pytest
from mcp.server.fastmcp.exceptions import ToolError
from prometheus_client import REGISTRY

from encrypter import server
from encrypter.config import EncrypterSettings
from encrypter.errors import EngineInitializationError
from fakes import ALICE, PASSPHRASE, FakeEngine, make_keyring


def _calls(tool_name, status):
    return REGISTRY.get_sample_value("encrypter_tool_calls_total", {"tool_name": tool_name, "status": status}) or 0.0


@pytest.fixture
def engine():
    return FakeEngine(make_keyring()[:1], secrets={ALICE: PASSPHRASE})


@pytest.fixture
def configured(monkeypatch, keyring_home, engine):
    for name in ("_settings", "_service", "_engine_factory"):
        monkeypatch.setattr(server, name, None)

    def _configure(**overrides):
        values = {"GNUPG_HOME": keyring_home, "GPG_RECIPIENT": ALICE, "GPG_PASSPHRASE": "", "GPG_ARMOR": False} | overrides
        return server.configure(EncrypterSettings(_env_file=None, **values), engine_factory=lambda home: engine)
    return _configure


@pytest.mark.asyncio
async def test_encrypt_then_decrypt_with_call_passphrase(configured):
    configured()
    ciphertext = await server.pgp_encrypt(base64.b64encode(b"iban DE00 1234").decode())
    plaintext = await server.pgp_decrypt(ciphertext, passphrase=PASSPHRASE)
    assert base64.b64decode(plaintext) == b"iban DE00 1234"


@pytest.mark.asyncio
async def test_decrypt_with_configured_passphrase(configured):
    configured(GPG_PASSPHRASE=PASSPHRASE)
    ciphertext = await server.pgp_encrypt(base64.b64encode(b"signed").decode())
    assert base64.b64decode(await server.pgp_decrypt(ciphertext)) == b"signed"


@pytest.mark.asyncio
async def test_decrypt_failure_raises_tool_error(configured):
    configured()
    ciphertext = await server.pgp_encrypt(base64.b64encode(b"data").decode())
    before = _calls("pgp_decrypt", "failure")
    with pytest.raises(ToolError, match="CRYPTO_ERROR"):
        await server.pgp_decrypt(ciphertext)
    assert _calls("pgp_decrypt", "failure") == before + 1


@pytest.mark.asyncio
async def test_armored_envelope_returned_as_text(configured, engine, mocker):
    configured(GPG_ARMOR=True)
    armored = b"-----BEGIN PGP MESSAGE-----\n\nhQEMA\n-----END PGP MESSAGE-----\n"
    mocker.patch.object(engine, "encrypt", return_value=armored)
    assert await server.pgp_encrypt(base64.b64encode(b"data").decode()) == armored.decode("ascii")


@pytest.mark.asyncio
async def test_armored_ciphertext_passed_through(configured, mocker):
    service = configured()
    decrypt = mocker.patch.object(service, "decrypt", return_value=server.CryptoResult.success(b"ok"))
    armored = "-----BEGIN PGP MESSAGE-----\n\nhQEMA\n-----END PGP MESSAGE-----\n"
    assert await server.pgp_decrypt(armored) == base64.b64encode(b"ok").decode()
    decrypt.assert_called_once_with(armored)


@pytest.mark.asyncio
async def test_encrypt_rejects_invalid_base64(configured):
    configured()
    before = _calls("pgp_encrypt", "failure")
    with pytest.raises(ToolError, match="INVALID_INPUT"):
        await server.pgp_encrypt("not base64!!")
    assert _calls("pgp_encrypt", "failure") == before + 1


@pytest.mark.asyncio
async def test_decrypt_rejects_unrecognised_ciphertext(configured):
    configured()
    with pytest.raises(ToolError, match="INVALID_INPUT"):
        await server.pgp_decrypt("%%%")


@pytest.mark.asyncio
async def test_tools_require_configuration(configured):
    with pytest.raises(ToolError, match="INTERNAL_ERROR"):
        await server.pgp_encrypt(base64.b64encode(b"data").decode())


@pytest.mark.asyncio
async def test_successful_call_is_counted(configured):
    configured()
    before = _calls("pgp_encrypt", "success")
    await server.pgp_encrypt(base64.b64encode(b"data").decode())
    assert _calls("pgp_encrypt", "success") == before + 1


# --- Startup ---
def test_main_exits_on_invalid_configuration(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("GNUPG_HOME", "GPG_RECIPIENT"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(SystemExit) as exc:
        server.main()
    assert exc.value.code == 1


def test_main_exits_when_engine_cannot_start(monkeypatch, tmp_path, keyring_home, mocker):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GNUPG_HOME", str(keyring_home))
    monkeypatch.setenv("GPG_RECIPIENT", ALICE)
    monkeypatch.setenv("ENABLE_METRICS", "false")
    mocker.patch.object(server, "configure", side_effect=EngineInitializationError("gpg missing"))
    run = mocker.patch.object(server.mcp, "run")
    with pytest.raises(SystemExit) as exc:
        server.main()
    assert exc.value.code == 1
    run.assert_not_called()


def test_main_runs_server(monkeypatch, tmp_path, keyring_home, mocker):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GNUPG_HOME", str(keyring_home))
    monkeypatch.setenv("GPG_RECIPIENT", ALICE)
    monkeypatch.setenv("METRICS_PORT", "9191")
    metrics = mocker.patch.object(server, "start_http_server")
    configure = mocker.patch.object(server, "configure")
    run = mocker.patch.object(server.mcp, "run")
    server.main()
    metrics.assert_called_once_with(9191)
    configure.assert_called_once()
    run.assert_called_once_with()
