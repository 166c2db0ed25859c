"""Unit tests for the change ledger."""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from hubdeploy.models.errors import LedgerLoadError, LedgerPersistenceError
from hubdeploy.models.ledger import InstallLedger, from_millis, to_millis
from hubdeploy.services import ledger as change_ledger

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.unit
class TestCanonicalKey:
    """Test canonical_key fallback behaviour."""

    def test_existing_file_resolves_symlinks(self, tmp_path):
        real = tmp_path / "real.xqy"
        real.write_text("x")
        link = tmp_path / "link.xqy"
        link.symlink_to(real)

        assert change_ledger.canonical_key(link) == os.path.realpath(real)

    def test_relative_segments_collapse(self, tmp_path):
        (tmp_path / "sub").mkdir()
        f = tmp_path / "a.xqy"
        f.write_text("x")

        assert change_ledger.canonical_key(tmp_path / "sub" / ".." / "a.xqy") == os.path.realpath(f)

    def test_missing_file_falls_back_to_absolute(self, tmp_path, caplog):
        missing = tmp_path / "nope" / "gone.xqy"

        with caplog.at_level("WARNING", logger="hubdeploy.ledger"):
            key = change_ledger.canonical_key(missing)

        assert key == os.path.abspath(missing)
        assert "Cannot get canonical path" in caplog.text


@pytest.mark.unit
class TestChangeDetection:
    """Test is_modified_since_install / record_installed."""

    def test_no_entry_is_modified(self, tmp_path):
        f = tmp_path / "new.xqy"
        f.write_text("x")

        assert change_ledger.is_modified_since_install(InstallLedger(), f) is True

    def test_older_mtime_is_not_modified(self, tmp_path, set_mtime):
        f = tmp_path / "b.xqy"
        f.write_text("x")
        set_mtime(f, T0 - timedelta(milliseconds=1))
        ledger = InstallLedger(entries={change_ledger.canonical_key(f): to_millis(T0)})

        assert change_ledger.is_modified_since_install(ledger, f) is False

    def test_equal_mtime_is_not_modified(self, tmp_path, set_mtime):
        f = tmp_path / "b.xqy"
        f.write_text("x")
        set_mtime(f, T0)
        ledger = InstallLedger(entries={change_ledger.canonical_key(f): to_millis(T0)})

        assert change_ledger.is_modified_since_install(ledger, f) is False

    def test_newer_mtime_is_modified(self, tmp_path, set_mtime):
        f = tmp_path / "b.xqy"
        f.write_text("x")
        set_mtime(f, T0 + timedelta(seconds=1))
        ledger = InstallLedger(entries={change_ledger.canonical_key(f): to_millis(T0)})

        assert change_ledger.is_modified_since_install(ledger, f) is True

    def test_record_then_check_is_not_modified(self, tmp_path, set_mtime):
        f = tmp_path / "c.xqy"
        f.write_text("x")
        set_mtime(f, T0)

        ledger = change_ledger.record_installed(InstallLedger(), f, T0 + timedelta(seconds=5))

        assert change_ledger.is_modified_since_install(ledger, f) is False

    def test_record_returns_new_ledger(self, tmp_path):
        f = tmp_path / "c.xqy"
        f.write_text("x")
        original = InstallLedger()

        updated = change_ledger.record_installed(original, f, T0)

        assert len(original) == 0
        assert updated.entries == {change_ledger.canonical_key(f): to_millis(T0)}

    def test_record_overwrites_single_entry(self, tmp_path):
        f = tmp_path / "c.xqy"
        f.write_text("x")

        ledger = change_ledger.record_installed(InstallLedger(), f, T0)
        ledger = change_ledger.record_installed(ledger, f, T0 + timedelta(hours=1))

        assert len(ledger) == 1
        assert ledger.installed_at(change_ledger.canonical_key(f)) == T0 + timedelta(hours=1)

    def test_symlink_and_target_share_entry(self, tmp_path, set_mtime):
        real = tmp_path / "real.xqy"
        real.write_text("x")
        set_mtime(real, T0)
        link = tmp_path / "link.xqy"
        link.symlink_to(real)

        ledger = change_ledger.record_installed(InstallLedger(), link, T0 + timedelta(seconds=1))

        assert change_ledger.is_modified_since_install(ledger, real) is False

    def test_missing_file_read_and_write_keys_agree(self, tmp_path):
        missing = tmp_path / "gone.xqy"

        ledger = change_ledger.record_installed(InstallLedger(), missing, T0)

        assert os.path.abspath(missing) in ledger
        # No mtime to compare against, so still reported as modified
        assert change_ledger.is_modified_since_install(ledger, missing) is True


@pytest.mark.unit
class TestForget:
    """Test forget."""

    def test_drops_entries_under_root_only(self, tmp_path):
        inside = tmp_path / "mods" / "a.xqy"
        inside.parent.mkdir()
        inside.write_text("x")
        sibling = tmp_path / "mods-other" / "b.xqy"
        sibling.parent.mkdir()
        sibling.write_text("x")

        ledger = change_ledger.record_installed(InstallLedger(), inside, T0)
        ledger = change_ledger.record_installed(ledger, sibling, T0)

        result = change_ledger.forget(ledger, [tmp_path / "mods"])

        assert list(result.entries) == [change_ledger.canonical_key(sibling)]


@pytest.mark.unit
class TestPersistence:
    """Test load / read_ledger / persist."""

    def test_load_missing_file_returns_empty(self, tmp_path):
        ledger = change_ledger.load(tmp_path / "absent.json")

        assert len(ledger) == 0

    def test_load_corrupt_file_returns_empty(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{ invalid json }")

        ledger = change_ledger.load(path)

        assert len(ledger) == 0

    def test_load_non_object_returns_empty(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("[1, 2, 3]")

        assert len(change_ledger.load(path)) == 0

    def test_read_ledger_raises_on_bad_values(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({"/a/b.xqy": "yesterday"}))

        with pytest.raises(LedgerLoadError, match="LEDGER_LOAD_FAILED"):
            change_ledger.read_ledger(path)

    def test_persist_writes_flat_json_object(self, tmp_path):
        path = tmp_path / "nested" / "ledger.json"
        ledger = InstallLedger(entries={"/a/b.xqy": 1000, "/a/c.xqy": 2000})

        change_ledger.persist(ledger, path)

        assert json.loads(path.read_text()) == {"/a/b.xqy": 1000, "/a/c.xqy": 2000}
        assert not (tmp_path / "nested" / "ledger.json.tmp").exists()

    def test_round_trip_preserves_pairs(self, tmp_path):
        path = tmp_path / "ledger.json"
        original = InstallLedger(entries={"/a/b.xqy": to_millis(T0), "/x/y.sjs": 1})

        change_ledger.persist(original, path)
        reloaded = change_ledger.load(path)
        change_ledger.persist(reloaded, path)

        assert change_ledger.load(path).entries == original.entries

    def test_persist_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")

        with pytest.raises(LedgerPersistenceError):
            change_ledger.persist(InstallLedger(entries={"/a": 1}), blocker / "ledger.json")


@pytest.mark.unit
def test_millis_conversion_round_trip():
    assert from_millis(to_millis(T0)) == T0
