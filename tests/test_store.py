"""Unit tests for the sealed config store."""

import dataclasses
import json
import os
import stat
import time
from pathlib import Path
from unittest import mock

import pytest

from spotr.config import NONCE_LEN
from spotr.errors import ConfigNotPersisted, CryptographyError, MalformedConfig, UnknownClient
from spotr.store import Config, EncryptedBlob, advance_nonce
from spotr.token import Token

from .conftest import TEST_KEY


def make_token(expires_in: int = 3600) -> Token:
    return Token(
        access_token="access",
        refresh_token="refresh",
        expires_at=int(time.time()) + expires_in,
        scope="user-modify-playback-state",
    )


class TestAdvanceNonce:
    """Tests for the big-endian nonce counter."""

    def test_increments_last_byte(self) -> None:
        assert advance_nonce(bytes(NONCE_LEN)) == bytes(NONCE_LEN - 1) + b"\x01"

    def test_carry_chain_wraps_trailing_max_bytes(self) -> None:
        """Trailing 0xFF bytes become zero and the next byte is incremented."""
        assert advance_nonce(b"\x00\x07\xff\xff") == b"\x00\x08\x00\x00"

    def test_increments_integer_value_by_one(self) -> None:
        samples = [
            bytes(NONCE_LEN),
            b"\x00" * 11 + b"\xfe",
            b"\x12\x34" + b"\xff" * 10,
            b"\xfe" + b"\xff" * 11,
            b"\x00\xff\x00\xff\x00\xff\x00\xff\x00\xff\x00\xff",
        ]
        for nonce in samples:
            advanced = advance_nonce(nonce)
            assert len(advanced) == len(nonce)
            assert int.from_bytes(advanced, "big") == int.from_bytes(nonce, "big") + 1

    def test_does_not_modify_input(self) -> None:
        nonce = bytearray(b"\x00\xff")
        advance_nonce(nonce)
        assert nonce == bytearray(b"\x00\xff")

    def test_exhausted_nonce_fails(self) -> None:
        """All-0xFF cannot advance without wrapping to a reused value."""
        with pytest.raises(CryptographyError):
            advance_nonce(b"\xff" * NONCE_LEN)

    def test_exhausted_nonce_fails_deterministically(self) -> None:
        for _ in range(3):
            with pytest.raises(CryptographyError):
                advance_nonce(b"\xff\xff")


class TestSealing:
    """Tests for encrypt_and_store / decrypt."""

    def test_round_trip(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        for value in ["shh", "", "ünïcødé", {"access_token": "a", "expires_at": 1}]:
            assert config.decrypt(config.encrypt_and_store(value)) == value

    def test_same_plaintext_gets_distinct_nonces_and_ciphertexts(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        first = config.encrypt_and_store("shh")
        second = config.encrypt_and_store("shh")
        assert first.nonce != second.nonce
        assert first.data != second.data

    def test_counter_is_shared_across_fields_and_clients(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        config.add_client("a", "secret-a")
        config.set_token("a", make_token())
        config.add_client("b", "secret-b")

        records = config._clients
        nonces = [records["a"].enc_secret.nonce, records["a"].enc_token.nonce, records["b"].enc_secret.nonce]
        values = [int.from_bytes(nonce, "big") for nonce in nonces]
        assert values == [1, 2, 3]
        assert config.nonce == nonces[-1]

    def test_encrypt_marks_dirty(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        assert config.is_dirty() is False
        config.encrypt_and_store("x")
        assert config.is_dirty() is True

    def test_tampered_ciphertext_fails(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        blob = config.encrypt_and_store("shh")
        for index in range(len(blob.data)):
            data = bytearray(blob.data)
            data[index] ^= 0x01
            with pytest.raises(CryptographyError):
                config.decrypt(EncryptedBlob(nonce=blob.nonce, data=bytes(data)))

    def test_tampered_nonce_fails(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        blob = config.encrypt_and_store("shh")
        for index in range(len(blob.nonce)):
            nonce = bytearray(blob.nonce)
            nonce[index] ^= 0x80
            with pytest.raises(CryptographyError):
                config.decrypt(EncryptedBlob(nonce=bytes(nonce), data=blob.data))

    def test_malformed_nonce_length_fails(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        blob = config.encrypt_and_store("shh")
        with pytest.raises(CryptographyError):
            config.decrypt(EncryptedBlob(nonce=blob.nonce[:-1], data=blob.data))

    def test_wrong_key_fails(self) -> None:
        blob = Config(key_provider=lambda: TEST_KEY).encrypt_and_store("shh")
        other = Config(key_provider=lambda: b"\x01" * 32)
        with pytest.raises(CryptographyError):
            other.decrypt(blob)

    def test_wrong_key_length_fails(self) -> None:
        config = Config(key_provider=lambda: b"short")
        with pytest.raises(CryptographyError):
            config.encrypt_and_store("shh")

    def test_exhausted_counter_stops_encryption(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        config.nonce = b"\xff" * NONCE_LEN
        with pytest.raises(CryptographyError):
            config.add_client("abc", "shh")
        assert config.clients() == []
        assert config.is_dirty() is False

    def test_key_is_fetched_once_and_lazily(self) -> None:
        provider = mock.Mock(return_value=TEST_KEY)
        config = Config(key_provider=provider)
        assert config.clients() == []
        provider.assert_not_called()

        config.add_client("a", "x")
        config.add_client("b", "y")
        provider.assert_called_once_with()


class TestClients:
    """Tests for client mapping operations."""

    def test_set_default_requires_existing_client(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        with pytest.raises(UnknownClient) as exc_info:
            config.set_default("missing")
        assert exc_info.value.client_id == "missing"
        assert config.default is None
        assert config.is_dirty() is False

    def test_set_default_is_idempotent(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        config.add_client("abc", "shh")
        config.set_default("abc")
        config.set_default("abc")
        assert config.default == "abc"

    def test_unchanged_default_leaves_store_clean(self, load_config) -> None:
        """Only a real change marks the store dirty."""
        config = load_config()
        config.add_client("abc", "shh")
        config.set_default("abc")
        config.write_if_dirty()

        config.set_default("abc")
        config.eject_token("abc")
        assert config.is_dirty() is False

    def test_set_token_unknown_client(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        with pytest.raises(UnknownClient):
            config.set_token("missing", make_token())

    def test_eject_and_remove_unknown_client(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        with pytest.raises(UnknownClient):
            config.eject_token("missing")
        with pytest.raises(UnknownClient):
            config.remove_client("missing")
        assert config.is_dirty() is False

    def test_remove_default_client_clears_default(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        config.add_client("abc", "shh")
        config.set_default("abc")
        config.remove_client("abc")
        assert config.default is None
        assert config.clients() == []

    def test_get_client_decrypts_secret_and_token(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        token = make_token()
        config.add_client("abc", "shh")
        assert config.get_client("abc") == ("shh", None)

        config.set_token("abc", token)
        assert config.get_client("abc") == ("shh", token)

    def test_readding_client_replaces_secret_and_drops_token(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        config.add_client("abc", "old")
        config.set_token("abc", make_token())
        config.add_client("abc", "new")
        assert config.get_client("abc") == ("new", None)


class TestPersistence:
    """Tests for load / write_if_dirty."""

    def test_missing_file_loads_empty(self, load_config, config_path: Path) -> None:
        config = load_config()
        assert config.clients() == []
        assert config.default is None
        assert config.nonce == bytes(NONCE_LEN)

    def test_empty_file_loads_empty(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text("")
        assert load_config().clients() == []

    def test_unmodified_run_does_not_write(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.clients()
        assert config.is_dirty() is False
        assert config.write_if_dirty() is False
        assert not config_path.exists()

    def test_write_then_clean(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.add_client("abc", "shh")
        assert config.write_if_dirty() is True
        assert config.is_dirty() is False
        assert config.write_if_dirty() is False

    def test_written_file_is_owner_only(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.add_client("abc", "shh")
        config.write_if_dirty()
        assert stat.S_IMODE(config_path.stat().st_mode) == 0o600

    def test_new_file_is_owner_only_under_permissive_umask(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.add_client("abc", "shh")
        previous = os.umask(0)
        try:
            config.write_if_dirty()
        finally:
            os.umask(previous)
        assert stat.S_IMODE(config_path.stat().st_mode) == 0o600

    def test_existing_file_is_narrowed_to_owner_only(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text("{}")
        config_path.chmod(0o644)

        config = load_config()
        config.add_client("abc", "shh")
        config.write_if_dirty()
        assert stat.S_IMODE(config_path.stat().st_mode) == 0o600

    def test_secrets_are_not_stored_in_plaintext(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.add_client("abc", "very-secret-value")
        config.set_token("abc", dataclasses.replace(make_token(), access_token="very-secret-token"))
        config.write_if_dirty()

        content = config_path.read_text()
        assert "very-secret-value" not in content
        assert "very-secret-token" not in content

    def test_rewrite_truncates_shorter_content(self, load_config, config_path: Path) -> None:
        config = load_config()
        config.add_client("abc", "x" * 500)
        config.add_client("def", "y" * 500)
        config.write_if_dirty()

        config = load_config()
        config.remove_client("def")
        config.write_if_dirty()
        json.loads(config_path.read_text())
        assert [client_id for client_id, _ in load_config().clients()] == ["abc"]

    def test_nonce_counter_survives_reload(self, load_config) -> None:
        config = load_config()
        config.add_client("abc", "shh")
        config.write_if_dirty()

        reloaded = load_config()
        reloaded.add_client("def", "shh")
        assert int.from_bytes(reloaded.nonce, "big") == 2

    def test_detached_config_refuses_to_write_changes(self) -> None:
        config = Config(key_provider=lambda: TEST_KEY)
        assert config.write_if_dirty() is False

        config.add_client("abc", "shh")
        with pytest.raises(ConfigNotPersisted):
            config.write_if_dirty()

    def test_malformed_json(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text("{not json")
        with pytest.raises(MalformedConfig):
            load_config()

    def test_wrong_nonce_width(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"nonce": "AAAA", "clients": {}}))
        with pytest.raises(CryptographyError):
            load_config()

    def test_dangling_default_is_ignored(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"default": "gone", "clients": {}}))
        assert load_config().default is None

    def test_add_token_reload_eject_scenario(self, load_config) -> None:
        config = load_config()
        config.add_client("abc", "shh")
        assert config.clients() == [("abc", False)]

        config.set_token("abc", make_token(expires_in=3600))
        config.write_if_dirty()

        config = load_config()
        assert config.clients() == [("abc", True)]

        config.eject_token("abc")
        assert config.clients() == [("abc", False)]
        config.write_if_dirty()
        assert load_config().clients() == [("abc", False)]


class TestLegacyMigration:
    """Tests for sealing records from the unencrypted format."""

    def write_legacy(self, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text(
            json.dumps(
                {
                    "default": "old",
                    "clients": {
                        "old": {
                            "secret": "plain-secret",
                            "token": {"access_token": "a", "refresh_token": "r", "expires_at": 42},
                        }
                    },
                }
            )
        )

    def test_legacy_records_are_not_read_implicitly(self, load_config, config_path: Path) -> None:
        self.write_legacy(config_path)
        config = load_config()
        assert config.clients() == []
        assert config.default == "old"
        with pytest.raises(MalformedConfig):
            config.get_client("old")

    def test_migrate_seals_records(self, load_config, config_path: Path) -> None:
        self.write_legacy(config_path)
        config = load_config()
        assert config.migrate_legacy() == ["old"]
        assert config.is_dirty() is True
        config.write_if_dirty()

        assert "plain-secret" not in config_path.read_text()
        secret, token = load_config().get_client("old")
        assert secret == "plain-secret"
        assert token.refresh_token == "r"
        assert token.expires_at == 42

    def test_untouched_legacy_records_are_preserved(self, load_config, config_path: Path) -> None:
        self.write_legacy(config_path)
        config = load_config()
        config.add_client("new", "shh")
        config.write_if_dirty()

        reloaded = load_config()
        assert "old" in reloaded.legacy
        assert reloaded.clients() == [("new", False)]

    def test_migrate_accepts_nested_token_shape(self, load_config, config_path: Path) -> None:
        """Tokens stored as {"token": {...}, "expires_at": N} keep their expiry."""
        config_path.parent.mkdir(parents=True)
        config_path.write_text(
            json.dumps(
                {
                    "clients": {
                        "old": {
                            "secret": "s",
                            "token": {"token": {"access_token": "a", "expires_in": 3600}, "expires_at": 42},
                        }
                    }
                }
            )
        )
        config = load_config()
        assert config.migrate_legacy() == ["old"]

        secret, token = config.get_client("old")
        assert secret == "s"
        assert token.access_token == "a"
        assert token.expires_at == 42

    def test_unreadable_legacy_token_is_dropped(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"clients": {"old": {"secret": "s", "token": {"bogus": 1}}}}))
        config = load_config()
        assert config.migrate_legacy() == ["old"]

        secret, token = config.get_client("old")
        assert secret == "s"
        assert token is None

    def test_non_object_client_entry_is_malformed(self, load_config, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"clients": {"old": "not-a-record"}}))
        with pytest.raises(MalformedConfig):
            load_config()
