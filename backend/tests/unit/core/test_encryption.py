"""
Unit tests for direct-message encryption.
"""

import pytest

from unified_cache.core.encryption import (
    EncryptionConfigurationError,
    MessageEncryptor,
    decrypt_message,
    encrypt_message,
    get_message_encryptor,
    reset_message_encryptor,
)

KEY = "00112233445566778899aabbccddeeff" * 2
OTHER_KEY = "ffeeddccbbaa99887766554433221100" * 2
PLAINTEXT = "transfer 10"

# (segment, hex position): iv and tag are 16 bytes, the ciphertext matches PLAINTEXT
TAMPER_POSITIONS = (
    [(0, position) for position in range(32)]
    + [(1, position) for position in range(32)]
    + [(2, position) for position in range(len(PLAINTEXT) * 2)]
)


def flip_hex_digit(value, position):
    replacement = "1" if value[position] == "0" else "0"
    return value[:position] + replacement + value[position + 1 :]


@pytest.fixture
def encryptor():
    return MessageEncryptor(KEY)


@pytest.fixture(autouse=True)
def reset_global_encryptor():
    reset_message_encryptor()
    yield
    reset_message_encryptor()


class TestMessageEncryptor:
    """Test encrypt/decrypt behaviour."""

    def test_round_trip(self, encryptor):
        encoded = encryptor.encrypt("Hello, team!")

        assert encryptor.decrypt(encoded) == "Hello, team!"

    def test_unicode_round_trip(self, encryptor):
        message = "Привет 👋 こんにちは"

        assert encryptor.decrypt(encryptor.encrypt(message)) == message

    def test_empty_message(self, encryptor):
        encoded = encryptor.encrypt("")

        assert encoded.endswith(":")
        assert encryptor.decrypt(encoded) == ""

    def test_wire_format(self, encryptor):
        iv, tag, ciphertext = encryptor.encrypt("abc").split(":")

        assert len(iv) == 32
        assert len(tag) == 32
        assert len(ciphertext) == 6
        assert iv == iv.lower()

    def test_random_iv_per_message(self, encryptor):
        first = encryptor.encrypt("same")
        second = encryptor.encrypt("same")

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]

    @pytest.mark.parametrize("segment,position", TAMPER_POSITIONS)
    def test_any_tampered_digit_rejected(self, encryptor, segment, position):
        parts = encryptor.encrypt(PLAINTEXT).split(":")
        assert len(parts[segment]) > position

        parts[segment] = flip_hex_digit(parts[segment], position)

        assert encryptor.decrypt(":".join(parts)) is None

    def test_wrong_key_rejected(self, encryptor):
        encoded = encryptor.encrypt("secret")

        assert MessageEncryptor(OTHER_KEY).decrypt(encoded) is None

    @pytest.mark.parametrize(
        "encoded",
        [
            "",
            "plain text",
            "aa:bb",
            "a:b:c:d",
            "zz" * 16 + ":" + "00" * 16 + ":00",
            "00" * 12 + ":" + "00" * 16 + ":00",
            "00" * 16 + ":" + "00" * 8 + ":00",
            "00" * 16 + ":" + "00" * 16 + ":0",
        ],
    )
    def test_malformed_input(self, encryptor, encoded):
        assert encryptor.decrypt(encoded) is None

    def test_non_string_input(self, encryptor):
        assert encryptor.decrypt(None) is None
        assert encryptor.decrypt(b"00:00:00") is None

    def test_is_encrypted(self, encryptor):
        assert MessageEncryptor.is_encrypted(encryptor.encrypt("x")) is True
        assert MessageEncryptor.is_encrypted("hello") is False
        assert MessageEncryptor.is_encrypted("aa:bb:cc") is False
        assert MessageEncryptor.is_encrypted(42) is False


class TestKeyValidation:
    """Test key checks."""

    def test_missing_key(self):
        with pytest.raises(EncryptionConfigurationError) as exc_info:
            MessageEncryptor("")

        assert exc_info.value.error_code == "ENCRYPTION_CONFIGURATION_ERROR"

    @pytest.mark.parametrize("key", ["00" * 16, "zz" * 32, KEY + "00"])
    def test_malformed_key(self, key):
        with pytest.raises(EncryptionConfigurationError):
            MessageEncryptor(key)


class TestModuleHelpers:
    """Test process-wide helpers keyed from settings."""

    def test_helpers_use_configured_key(self):
        encoded = encrypt_message("hi")

        assert decrypt_message(encoded) == "hi"
        assert MessageEncryptor(KEY).decrypt(encoded) == "hi"
        assert get_message_encryptor() is get_message_encryptor()

    def test_missing_key_fails_on_first_use(self, monkeypatch):
        monkeypatch.delenv("MESSAGE_ENCRYPTION_KEY")

        with pytest.raises(EncryptionConfigurationError):
            encrypt_message("hi")
