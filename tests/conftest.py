import logging
from unittest.mock import MagicMock

import pytest

from encrypter.service import EncryptionService
from fakes import ALICE, PASSPHRASE, FakeEngine, make_keyring


@pytest.fixture
def logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def keyring_home(tmp_path):
    home = tmp_path / "gnupg"
    home.mkdir(mode=0o700)
    return home


@pytest.fixture
def engine():
    return FakeEngine(make_keyring(), secrets={ALICE: PASSPHRASE})


@pytest.fixture
def make_service(engine, keyring_home, logger):
    """Builds services on the shared fake engine; records the key-homes it was opened with."""
    opened = []

    def _factory(home):
        opened.append(home)
        return engine

    def _make(recipient=ALICE, passphrase=PASSPHRASE, home=None):
        return EncryptionService(recipient, passphrase, home or keyring_home, logger, engine_factory=_factory)

    _make.opened = opened
    return _make
