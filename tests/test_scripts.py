"""
Operator script tests - the expiry sweep CLI in its dry-run, JSON, quiet and
failure modes.
"""

import importlib.util
import json
import pytest
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

from corpreg.core import dao, service
from corpreg.core.errors import TransientStoreError

from conftest import NOW, CONTACT_FIELDS

SCRIPT = Path(__file__).parent.parent / "scripts" / "sweep_expired.py"


@pytest.fixture(scope="module")
def sweep_script():
    spec = importlib.util.spec_from_file_location("sweep_expired", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _with_expire_date(expire_date):
    record = service.create_registration("user-1", dict(CONTACT_FIELDS), now=NOW)
    stored = dao.get_registration(record.id)
    stored.expire_date = expire_date
    return dao.save_registration(stored)


@pytest.fixture
def lapsed():
    return _with_expire_date(NOW - timedelta(days=1))


@pytest.fixture
def active():
    return _with_expire_date(NOW + timedelta(days=36500))


class TestSweepScript:

    def test_dry_run_json_lists_without_writing(self, sweep_script, lapsed, active, capsys):
        assert sweep_script.main(["--dry-run", "--json"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["dry_run"] is True
        assert result["updated"] == 0
        assert [item["id"] for item in result["lapsed"]] == [lapsed.id]
        assert result["lapsed"][0]["expireDate"] == lapsed.expire_date.isoformat()
        assert dao.get_registration(lapsed.id).is_expired is False

    def test_json_sweep_updates_once(self, sweep_script, lapsed, active, capsys):
        assert sweep_script.main(["--json"]) == 0
        first = json.loads(capsys.readouterr().out)
        assert first["dry_run"] is False
        assert first["updated"] == 1
        assert dao.get_registration(lapsed.id).is_expired is True
        assert dao.get_registration(active.id).is_expired is False

        assert sweep_script.main(["-j"]) == 0
        assert json.loads(capsys.readouterr().out)["updated"] == 0

    def test_dry_run_text_output(self, sweep_script, lapsed, capsys):
        assert sweep_script.main(["-n"]) == 0
        out = capsys.readouterr().out
        assert "1 registration(s) would be marked expired" in out
        assert lapsed.id in out

    def test_quiet_sweep(self, sweep_script, lapsed, capsys):
        assert sweep_script.main(["--quiet"]) == 0
        assert capsys.readouterr().out == ""
        assert dao.get_registration(lapsed.id).is_expired is True

    def test_store_failure_exit_code(self, sweep_script, lapsed, capsys):
        with patch.object(sweep_script.service, "sweep_expired", side_effect=TransientStoreError("database is locked")):
            assert sweep_script.main([]) == 1
        assert "Sweep failed: database is locked" in capsys.readouterr().err

    def test_find_lapsed_skips_flagged(self, sweep_script, lapsed):
        now = NOW + timedelta(days=1)
        assert [r.id for r in sweep_script.find_lapsed(now)] == [lapsed.id]
        service.sweep_expired(now=now)
        assert sweep_script.find_lapsed(now) == []
