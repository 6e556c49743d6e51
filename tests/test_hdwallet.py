"""Tests for deposit address derivation."""

import pytest

from trondeposit.exceptions import MasterSecretError
from trondeposit.hdwallet import (
    SigningKey,
    TronHDWallet,
    derive_keypair,
    get_hd_wallet,
    validate_wallet_config,
)
from trondeposit.config import Settings

from conftest import TEST_MNEMONIC


class TestTronHDWallet:
    """Tests for TronHDWallet."""

    def test_address_format(self, wallet: TronHDWallet):
        """Derived addresses are base58check T-addresses."""
        info = wallet.derive_address(0)

        assert info.address.startswith("T")
        assert len(info.address) == 34
        assert info.index == 0
        assert info.derivation_path == "m/44'/195'/0'/0/0"

    def test_derivation_is_deterministic(self, wallet: TronHDWallet):
        """Same secret and index always give the same address."""
        other = TronHDWallet(TEST_MNEMONIC)

        for index in (0, 1, 7, 1000):
            assert wallet.derive_address(index) == other.derive_address(index)

    def test_indices_give_distinct_addresses(self, wallet: TronHDWallet):
        addresses = {wallet.derive_address(i).address for i in range(20)}
        assert len(addresses) == 20

    def test_mnemonic_whitespace_and_case_normalized(self, wallet: TronHDWallet):
        messy = "  " + TEST_MNEMONIC.upper().replace(" ", "   ") + "\n"
        assert TronHDWallet(messy).derive_address(3) == wallet.derive_address(3)

    def test_passphrase_changes_addresses(self, wallet: TronHDWallet):
        protected = TronHDWallet(TEST_MNEMONIC, passphrase="extra")
        assert protected.derive_address(0) != wallet.derive_address(0)

    def test_index_out_of_range(self, wallet: TronHDWallet):
        with pytest.raises(ValueError):
            wallet.derive_address(-1)
        with pytest.raises(ValueError):
            wallet.derive_address(2**31)


class TestMasterSecretValidation:
    """The wallet refuses to exist without a valid secret."""

    @pytest.mark.parametrize("mnemonic", ["", "   "])
    def test_missing_mnemonic(self, mnemonic):
        with pytest.raises(MasterSecretError, match="not set"):
            TronHDWallet(mnemonic)

    def test_bad_checksum_rejected(self):
        """Last word changed: valid words, wrong checksum."""
        bad = TEST_MNEMONIC.rsplit(" ", 1)[0] + " abandon"
        with pytest.raises(MasterSecretError, match="BIP-39"):
            TronHDWallet(bad)

    def test_unknown_words_rejected(self):
        with pytest.raises(MasterSecretError):
            TronHDWallet("not a real mnemonic at all just some words here ok")

    def test_validate_wallet_config_fails_fast(self):
        settings = Settings(tron_mnemonic=None)
        with pytest.raises(MasterSecretError):
            validate_wallet_config(settings)

    def test_factory_caches_wallet(self):
        settings = Settings(tron_mnemonic=TEST_MNEMONIC)
        assert get_hd_wallet(settings) is get_hd_wallet(settings)


class TestSigningKey:
    """Signing keys are derived on demand and never printed."""

    def test_derive_keypair(self, wallet: TronHDWallet):
        address, key = derive_keypair(TEST_MNEMONIC, 5)

        assert address == wallet.derive_address(5).address
        assert isinstance(key, SigningKey)
        assert len(key.to_bytes()) == 32
        assert key == wallet.derive_signing_key(5)

    def test_key_redacted_in_repr(self, wallet: TronHDWallet):
        key = wallet.derive_signing_key(0)
        pair = (wallet.derive_address(0).address, key)

        assert key.to_hex() not in repr(key)
        assert key.to_hex() not in str(key)
        assert key.to_hex() not in f"{pair}"
        assert "redacted" in repr(key)

    def test_keys_differ_per_index(self, wallet: TronHDWallet):
        assert wallet.derive_signing_key(0) != wallet.derive_signing_key(1)
