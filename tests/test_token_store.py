"""
Tests for the persisted carrier token store.
"""
import json

import pytest

from freightops.services.token_store import TokenRecord, TokenStore


class TestAliasSlots:
    """xpo and expo must always read the same token."""

    @pytest.mark.parametrize("write_as,read_as", [
        ("xpo", "expo"),
        ("expo", "xpo"),
        ("EXPO ", "xpo"),
        ("xpo", "Expo"),
    ])
    def test_alias_round_trip(self, store, write_as, read_as):
        store.set_token(write_as, "abc123", "XPO")
        assert store.get_token(read_as) == "abc123"

    def test_latest_write_wins_across_spellings(self, store):
        store.set_token("xpo", "first", "XPO")
        store.set_token("expo", "second", "XPO")
        assert store.get_token("xpo") == "second"
        assert store.get_xpo_token() == "second"

    def test_clear_via_alias_clears_both(self, store):
        store.set_token("xpo", "abc123", "XPO")
        store.clear_token("expo")
        assert store.get_token("xpo") is None
        assert store.get_token("expo") is None

    def test_carriers_are_independent(self, store):
        store.set_token("estes", "estes-token", "Estes")
        store.set_token("xpo", "xpo-token", "XPO")
        store.clear_estes_token()
        assert store.get_estes_token() is None
        assert store.get_xpo_token() == "xpo-token"


class TestExpiry:
    def test_absent_token_is_expired(self, store):
        assert store.is_expired("estes") is True
        assert store.age_seconds("estes") is None

    def test_nine_minutes_is_fresh(self, store, clock):
        store.set_token("estes", "abc123", "Estes")
        clock.advance(9 * 60)
        assert store.is_expired("estes", 10) is False

    def test_ten_minutes_is_expired(self, store, clock):
        store.set_token("estes", "abc123", "Estes")
        clock.advance(10 * 60)
        assert store.is_expired("estes", 10) is True

    def test_age_is_shared_across_aliases(self, store, clock):
        store.set_token("expo", "abc123", "XPO")
        clock.advance(30)
        assert store.age_seconds("xpo") == 30


class TestWrites:
    def test_unknown_carrier_not_stored(self, store):
        store.set_token("fedex", "abc123", "FedEx")
        assert store.get_token("fedex") is None
        assert store.is_expired("fedex") is True

    def test_empty_token_not_stored(self, store):
        store.set_token("estes", "", "Estes")
        assert store.get_token("estes") is None

    def test_record_keeps_label_and_issue_time(self, store, clock):
        store.set_token("estes", "abc123", "Estes Express")
        record = store.get_record("estes")
        assert record.label == "Estes Express"
        assert record.issued_at == clock.now

    def test_clear_token_drops_cached_credentials(self, store, vault):
        vault.set_credentials("xpo", "user", "secret")
        store.set_token("xpo", "abc123", "XPO")
        store.clear_xpo_token()
        assert vault.get_credentials("xpo") is None

    def test_clear_all(self, store, vault):
        vault.set_credentials("estes", "user", "secret")
        store.set_token("estes", "a", "Estes")
        store.set_token("xpo", "b", "XPO")
        store.clear_all()
        assert store.get_token("estes") is None
        assert store.get_token("xpo") is None
        assert vault.get_credentials("estes") is None


class TestPersistence:
    def test_tokens_survive_restart(self, tmp_path, clock):
        path = tmp_path / "tokens.json"
        with TokenStore(path=path, clock=clock) as first:
            first.set_token("xpo", "persisted", "XPO")

        blob = json.loads(path.read_text())
        assert set(blob) == {"estes", "xpo", "expo"}
        assert blob["expo"]["token"] == "persisted"

        second = TokenStore(path=path, clock=clock).init()
        assert second.get_token("expo") == "persisted"

    def test_corrupt_file_starts_empty(self, tmp_path, clock):
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        store = TokenStore(path=path, clock=clock).init()
        assert store.get_token("estes") is None

    def test_legacy_blob_with_only_alias_slot(self, tmp_path, clock):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({
            "expo": {"token": "old", "label": "XPO", "issued_at": clock.now},
        }))
        store = TokenStore(path=path, clock=clock).init()
        assert store.get_token("xpo") == "old"


def test_record_from_dict_rejects_garbage():
    assert TokenRecord.from_dict(None) is None
    assert TokenRecord.from_dict({"label": "x"}) is None
    assert TokenRecord.from_dict({"token": "", "issued_at": 1}) is None
    assert TokenRecord.from_dict({"token": "t", "issued_at": "nope"}) is None
