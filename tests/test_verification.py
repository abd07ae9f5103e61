"""Tests for verify and repair workflows."""

# pylint: disable=redefined-outer-name

import os
import shutil
from pathlib import Path

import pytest

from parityguard.app import Services, build_services
from parityguard.cache import ALL_ITEMS_KEY, status_key_for_id
from parityguard.config import Config
from parityguard.database import Database, ProtectionStatus
from parityguard.errors import ExternalToolExecutionError, ItemNotFoundError, UserInputError
from parityguard.par2 import Par2Result
from parityguard.verification import (
    aggregate_status,
    classify_repair,
    classify_verify,
    main_parity_files,
)

S = ProtectionStatus


@pytest.fixture
def services(config: Config, temp_db: Database, fake_runner) -> Services:
    return build_services(config, temp_db, runner=fake_runner)


def _result(returncode: int, output: str = "") -> Par2Result:
    return Par2Result(argv=["par2", "verify"], returncode=returncode, output=output)


class TestClassification:
    """Tests for mapping par2 output to statuses."""

    @pytest.mark.parametrize("returncode, output, expected", [
        (0, "", S.VERIFIED),
        (0, "All files are correct, repair is not required.", S.VERIFIED),
        (1, "Target: \"a.jpg\" - damaged. Found 9 of 10 data blocks.", S.DAMAGED),
        (1, "Target: \"b.jpg\" - missing.", S.MISSING),
        (1, "a.jpg - DAMAGED, b.jpg - missing", S.DAMAGED),
    ])
    def test_verify(self, returncode, output, expected):
        assert classify_verify(_result(returncode, output)) == expected

    def test_verify_unexpected_output_raises(self):
        with pytest.raises(ExternalToolExecutionError) as exc_info:
            classify_verify(_result(2, "Invalid option"))
        assert exc_info.value.returncode == 2

    @pytest.mark.parametrize("returncode, output, expected", [
        (0, "", S.REPAIRED),
        (1, "Repair complete.", S.REPAIRED),
        (1, "All files are correct, repair is not required.", S.REPAIRED),
        (2, "Repair is not possible. You need 4 more recovery blocks.", S.MISSING),
        (2, "Repair is not possible: too many files are damaged.", S.MISSING),
        (2, "Repair is not possible.", S.REPAIR_FAILED),
    ])
    def test_repair(self, returncode, output, expected):
        assert classify_repair(_result(returncode, output)) == expected

    def test_repair_unexpected_output_raises(self):
        with pytest.raises(ExternalToolExecutionError):
            classify_repair(_result(3, "Segmentation fault"))

    @pytest.mark.parametrize("statuses, repair, expected", [
        ([S.VERIFIED, S.VERIFIED], False, S.VERIFIED),
        ([S.VERIFIED, S.MISSING, S.DAMAGED], False, S.DAMAGED),
        ([S.VERIFIED, S.MISSING], False, S.MISSING),
        ([S.DAMAGED, S.ERROR], False, S.ERROR),
        ([S.REPAIRED, S.REPAIRED], True, S.REPAIRED),
        ([S.REPAIRED, S.REPAIR_FAILED, S.MISSING], True, S.MISSING),
        ([S.REPAIRED, S.REPAIR_FAILED], True, S.REPAIR_FAILED),
        ([S.MISSING, S.ERROR], True, S.ERROR),
    ])
    def test_aggregate(self, statuses, repair, expected):
        assert aggregate_status(statuses, repair) == expected

    def test_main_parity_files_skip_volumes(self, tmp_path: Path):
        for name in ("a.par2", "a.vol00+01.par2", "b.par2", "b.VOL01+02.par2", "notes.txt"):
            (tmp_path / name).write_bytes(b"")
        assert [p.name for p in main_parity_files(tmp_path)] == ["a.par2", "b.par2"]


class TestVerify:
    """Tests for VerificationService.verify."""

    def test_healthy_directory(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))

        outcome = services.verification.verify(path=str(data_dir))

        assert outcome.status == S.VERIFIED
        assert outcome.success
        argv = fake_runner.calls_for("verify")[0]
        assert argv[-3:] == ["-B", str(data_dir), str(data_dir / ".parity" / "data.par2")]
        item = services.protection_repository.find_by_id(protected.item_id)
        assert item.last_status == S.VERIFIED
        assert item.last_verified is not None

    def test_damaged_is_recorded_in_history(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("verify", 1, "Target: \"photos/a.jpg\" - damaged.")

        outcome = services.verification.verify(item_id=protected.item_id)

        assert outcome.status == S.DAMAGED
        assert not outcome.success
        [entry] = services.verification_repository.get_history(protected.item_id)
        assert entry.status == S.DAMAGED
        assert "damaged" in entry.details

    def test_file_item_uses_parent_as_base(self, services: Services, data_dir: Path, fake_runner):
        services.protection.protect(str(data_dir / "notes.txt"))
        services.verification.verify(path=str(data_dir / "notes.txt"))
        argv = fake_runner.calls_for("verify")[0]
        assert argv[argv.index("-B") + 1] == str(data_dir)

    def test_missing_parity_is_missing_without_par2(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        (data_dir / ".parity" / "data.par2").unlink()

        outcome = services.verification.verify(item_id=protected.item_id)

        assert outcome.status == S.MISSING
        assert fake_runner.calls_for("verify") == []

    def test_missing_source_directory(self, services: Services, data_dir: Path, tmp_path: Path, fake_runner):
        protected = services.protection.protect(str(data_dir), file_categories=["images"])
        moved = tmp_path / "parity-copy"
        (data_dir / ".parity-images").rename(moved)
        shutil.rmtree(data_dir)
        services.db.conn.execute(
            "UPDATE protected_items SET par2_path = ? WHERE id = ?", (str(moved), protected.item_id)
        )
        services.db.conn.commit()

        outcome = services.verification.verify(item_id=protected.item_id)

        assert outcome.status == S.MISSING
        assert "no longer exists" in outcome.details
        assert fake_runner.calls_for("verify") == []

    def test_unexpected_output_propagates(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("verify", 2, "Invalid command line")

        with pytest.raises(ExternalToolExecutionError):
            services.verification.verify(path=str(data_dir))

        item = services.protection_repository.find_by_id(protected.item_id)
        assert item.last_status == S.ERROR
        assert item.last_verified is not None
        [entry] = services.verification_repository.get_history(protected.item_id)
        assert entry.status == S.ERROR
        assert "Invalid command line" in entry.details

    def test_individual_files_fan_out(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir), file_categories=["images"])
        (data_dir / ".parity-images" / "photos__a.jpg.vol0+1.par2").write_bytes(b"")
        fake_runner.respond("verify", 0)
        fake_runner.respond("verify", 1, "b.PNG - missing")

        outcome = services.verification.verify(item_id=protected.item_id)

        assert len(fake_runner.calls_for("verify")) == 2
        assert outcome.status == S.MISSING
        assert outcome.details.startswith("Verified: 1, Damaged: 0, Missing: 1, Error: 0")
        assert "photos__b.PNG: MISSING" in outcome.details

    def test_fan_out_records_errors_per_file(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir), file_categories=["images"])
        fake_runner.respond("verify", 0)
        fake_runner.respond("verify", 5, "garbage")

        outcome = services.verification.verify(item_id=protected.item_id)

        assert outcome.status == S.ERROR
        assert "Error: 1" in outcome.details

    def test_empty_parity_directory_is_error(self, services: Services, data_dir: Path):
        protected = services.protection.protect(str(data_dir), file_categories=["images"])
        for parity in (data_dir / ".parity-images").iterdir():
            parity.unlink()

        outcome = services.verification.verify(item_id=protected.item_id)

        assert outcome.status == S.ERROR

    def test_metadata_issues_downgrade_verified(self, services: Services, data_dir: Path):
        os.chmod(data_dir / "notes.txt", 0o644)
        services.protection.protect(str(data_dir))
        os.chmod(data_dir / "notes.txt", 0o600)

        outcome = services.verification.verify(path=str(data_dir), verify_metadata=True)

        assert outcome.status == S.METADATA_ISSUES
        assert "--- Metadata Verification ---" in outcome.details

    def test_metadata_issues_do_not_mask_damage(self, services: Services, data_dir: Path, fake_runner):
        os.chmod(data_dir / "notes.txt", 0o644)
        services.protection.protect(str(data_dir))
        os.chmod(data_dir / "notes.txt", 0o600)
        fake_runner.respond("verify", 1, "damaged")

        outcome = services.verification.verify(path=str(data_dir), verify_metadata=True)

        assert outcome.status == S.DAMAGED

    def test_auto_restore_metadata(self, services: Services, data_dir: Path):
        os.chmod(data_dir / "notes.txt", 0o644)
        services.protection.protect(str(data_dir))
        os.chmod(data_dir / "notes.txt", 0o600)

        outcome = services.verification.verify(
            path=str(data_dir), verify_metadata=True, auto_restore_metadata=True
        )

        assert outcome.details.endswith("Metadata has been automatically restored.")
        assert (data_dir / "notes.txt").stat().st_mode & 0o777 == 0o644

    def test_unknown_item(self, services: Services):
        with pytest.raises(ItemNotFoundError):
            services.verification.verify(item_id=99)

    def test_requires_target(self, services: Services):
        with pytest.raises(UserInputError):
            services.verification.verify()

    def test_path_prefers_whole_directory(self, services: Services, data_dir: Path, temp_db: Database):
        whole = services.protection.protect(str(data_dir))
        temp_db.conn.execute(
            """
            INSERT INTO protected_items (path, mode, redundancy, protected_date, par2_path,
                                         file_types, parent_dir)
            VALUES (?, 'individual-files:pdf', 10, '2024-01-01 00:00:00', ?, '["pdf"]', ?)
            """,
            (str(data_dir), str(data_dir / ".parity-pdf"), str(data_dir)),
        )
        temp_db.conn.commit()

        assert services.verification.get_item(path=str(data_dir)).id == whole.item_id

    def test_update_invalidates_cache(self, services: Services, data_dir: Path):
        protected = services.protection.protect(str(data_dir))
        services.protection.list_items()
        services.cache.set(status_key_for_id(protected.item_id), {"stale": True})

        services.verification.verify(item_id=protected.item_id)

        assert not services.cache.has(ALL_ITEMS_KEY)
        assert not services.cache.has(status_key_for_id(protected.item_id))
        assert services.protection.list_items()[0]["last_status"] == "VERIFIED"


class TestRepair:
    """Tests for VerificationService.repair."""

    def test_repair_restores_metadata(self, services: Services, data_dir: Path, fake_runner):
        os.chmod(data_dir / "notes.txt", 0o644)
        services.protection.protect(str(data_dir))
        os.chmod(data_dir / "notes.txt", 0o600)
        fake_runner.respond("repair", 0, "Repair complete.")

        outcome = services.verification.repair(path=str(data_dir))

        assert outcome.status == S.REPAIRED
        assert "--- Metadata Restoration ---" in outcome.details
        assert (data_dir / "notes.txt").stat().st_mode & 0o777 == 0o644

    def test_repair_without_metadata_restore(self, services: Services, data_dir: Path):
        services.protection.protect(str(data_dir))
        outcome = services.verification.repair(path=str(data_dir), restore_metadata=False)
        assert "Metadata Restoration" not in outcome.details

    def test_insufficient_recovery_data(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("repair", 2, "Repair is not possible. You need 3 more recovery blocks.")

        outcome = services.verification.repair(item_id=protected.item_id)

        assert outcome.status == S.MISSING
        assert "Metadata Restoration" not in outcome.details
        assert services.verification_repository.get_history(protected.item_id)[0].status == S.MISSING

    def test_repair_failed(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("repair", 2, "Repair is not possible.")
        assert services.verification.repair(item_id=protected.item_id).status == S.REPAIR_FAILED

    def test_unexpected_repair_exit_records_error(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("repair", 3, "Segmentation fault")

        with pytest.raises(ExternalToolExecutionError):
            services.verification.repair(item_id=protected.item_id)

        [entry] = services.verification_repository.get_history(protected.item_id)
        assert entry.status == S.ERROR
        assert "exit code 3" in entry.details

    def test_status_includes_history(self, services: Services, data_dir: Path, fake_runner):
        protected = services.protection.protect(str(data_dir))
        fake_runner.respond("verify", 1, "damaged")
        services.verification.verify(item_id=protected.item_id)
        services.verification.repair(item_id=protected.item_id)

        status = services.verification.get_status(item_id=protected.item_id)

        assert status["last_status"] == "REPAIRED"
        assert [h["status"] for h in status["history"]] == ["REPAIRED", "DAMAGED"]


class TestRecentActivity:
    """Tests for the recent verification queries."""

    def test_counts_and_problem_items(self, services: Services, data_dir: Path, fake_runner):
        services.protection.protect(str(data_dir / "notes.txt"))
        services.protection.protect(str(data_dir / "docs"))
        fake_runner.respond("verify", 1, "missing")
        services.verification.verify(path=str(data_dir / "notes.txt"))
        services.verification.verify(path=str(data_dir / "docs"))

        counts = services.verification_repository.recent_status_counts(minutes=5)
        problems = services.verification_repository.recent_problem_items(minutes=5)

        assert counts == {"MISSING": 1, "VERIFIED": 1}
        assert problems == [{"path": str(data_dir / "notes.txt"), "status": "MISSING"}]
