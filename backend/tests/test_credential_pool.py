"""
Credential pool tests.

- Keys from GEMINI_API_KEY, GEMINI_API_KEYS and GEMINI_API_KEY_1..20 are merged.
- Values are trimmed and unquoted; anything shorter than 10 chars is dropped.
- Duplicates collapse regardless of source.
"""
import pytest

from services.credential_pool import (
    Credential,
    CredentialPool,
    MAX_INDEXED_KEYS,
    MIN_KEY_LENGTH,
    normalize_key,
)


class TestNormalizeKey:
    def test_trims_whitespace(self):
        assert normalize_key("  abcdefghijkl \n") == "abcdefghijkl"

    def test_strips_one_layer_of_matching_quotes(self):
        assert normalize_key('"abcdefghijkl"') == "abcdefghijkl"
        assert normalize_key("'abcdefghijkl'") == "abcdefghijkl"
        assert normalize_key("\"'abcdefghijkl'\"") == "'abcdefghijkl'"

    def test_mismatched_quotes_are_kept(self):
        assert normalize_key("\"abcdefghijkl'") == "\"abcdefghijkl'"

    def test_short_values_rejected_after_unquoting(self):
        """A quoted 9-char key is too short once the quotes are removed."""
        assert normalize_key('"123456789"') is None
        assert normalize_key("123456789") is None
        assert normalize_key("1234567890") == "1234567890"

    def test_empty_values_rejected(self):
        assert normalize_key(None) is None
        assert normalize_key("") is None
        assert normalize_key("   ") is None


class TestCredentialPoolLoad:
    def test_merges_all_sources(self):
        env = {
            "GEMINI_API_KEY": "single-key-000001",
            "GEMINI_API_KEYS": "list-key-0000001,list-key-0000002",
            "GEMINI_API_KEY_1": "slot-key-0000001",
            "GEMINI_API_KEY_20": "slot-key-0000020",
        }
        values = {c.value for c in CredentialPool(env).load()}
        assert values == {
            "single-key-000001",
            "list-key-0000001",
            "list-key-0000002",
            "slot-key-0000001",
            "slot-key-0000020",
        }

    def test_legacy_single_var_may_hold_a_list(self):
        env = {"GEMINI_API_KEY": "legacy-key-00001, legacy-key-00002"}
        values = [c.value for c in CredentialPool(env).load()]
        assert sorted(values) == ["legacy-key-00001", "legacy-key-00002"]

    def test_slots_beyond_maximum_are_ignored(self):
        env = {f"GEMINI_API_KEY_{MAX_INDEXED_KEYS + 1}": "slot-key-beyond-max"}
        assert CredentialPool(env).load() == []

    def test_duplicates_across_sources_collapse(self):
        env = {
            "GEMINI_API_KEY": "same-key-0000001",
            "GEMINI_API_KEYS": "'same-key-0000001', same-key-0000001",
            "GEMINI_API_KEY_3": ' "same-key-0000001" ',
        }
        credentials = CredentialPool(env).load()
        assert len(credentials) == 1
        assert credentials[0].value == "same-key-0000001"

    def test_never_returns_short_or_duplicate_values(self):
        """Property: no normalized value under 10 chars, no duplicates."""
        env = {
            "GEMINI_API_KEY": "short,  ,'tiny',valid-key-00001",
            "GEMINI_API_KEYS": ",,valid-key-00001,\"valid-key-00002\",x",
        }
        for i in range(1, MAX_INDEXED_KEYS + 1):
            env[f"GEMINI_API_KEY_{i}"] = f"valid-key-{i % 3:05d}" if i % 2 else "abc"

        credentials = CredentialPool(env).load()
        values = [c.value for c in credentials]
        assert all(len(v) >= MIN_KEY_LENGTH for v in values)
        assert len(values) == len(set(values))

    def test_empty_configuration_is_not_an_error(self):
        assert CredentialPool({}).load() == []

    def test_reads_process_environment_by_default(self, monkeypatch):
        for i in range(1, MAX_INDEXED_KEYS + 1):
            monkeypatch.delenv(f"GEMINI_API_KEY_{i}", raising=False)
        monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
        monkeypatch.setenv("GEMINI_API_KEY", "from-process-env-01")
        assert [c.value for c in CredentialPool().load()] == ["from-process-env-01"]


class TestCredential:
    def test_equality_ignores_raw_value(self):
        assert Credential("abcdefghijkl", raw=' "abcdefghijkl" ') == Credential("abcdefghijkl")
        assert len({Credential("abcdefghijkl", raw="x"), Credential("abcdefghijkl", raw="y")}) == 1

    def test_repr_shows_only_suffix(self):
        credential = Credential("AIzaSySECRETSECRET-wxyz")
        assert credential.suffix == "wxyz"
        assert "SECRET" not in repr(credential)
