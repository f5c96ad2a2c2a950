from __future__ import annotations

import pytest

from tgauth.config import Settings, load_key_material
from tgauth.domain_errors import NotConfigured
from tgauth.services.indexer import DeterministicIndexer


def test_index_is_deterministic_for_same_key() -> None:
    indexer = DeterministicIndexer("index-key")

    assert indexer.index("token-value") == indexer.index("token-value")
    assert indexer.index("token-value") == DeterministicIndexer(b"index-key").index("token-value")
    assert len(indexer.index("token-value")) == 64


def test_index_depends_on_key_and_plaintext() -> None:
    first = DeterministicIndexer("key-one")
    second = DeterministicIndexer("key-two")

    assert first.index("token-value") != second.index("token-value")
    assert first.index("token-value") != first.index("token-valuf")
    assert "token-value" not in first.index("token-value")


@pytest.mark.parametrize("secret", [None, "", b""])
def test_missing_key_is_not_configured(secret) -> None:
    with pytest.raises(NotConfigured) as exc_info:
        DeterministicIndexer(secret)

    assert exc_info.value.code == "NOT_CONFIGURED"
    assert exc_info.value.http_status == 500


def test_key_material_falls_back_to_signing_secret() -> None:
    keys = load_key_material(Settings(_env_file=None, JWT_SECRET_KEY="signing", HMAC_SECRET=None))

    assert keys.signing_secret == "signing"
    assert keys.index_secret == "signing"


def test_key_material_prefers_dedicated_index_secret() -> None:
    keys = load_key_material(Settings(_env_file=None, JWT_SECRET_KEY="signing", HMAC_SECRET="indexing"))

    assert keys.index_secret == "indexing"


def test_blank_signing_secret_is_not_configured() -> None:
    with pytest.raises(NotConfigured):
        load_key_material(Settings(_env_file=None, JWT_SECRET_KEY="   "))
