"""Runs par2 verify/repair and classifies the output into protection statuses."""

import logging
import re
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from parityguard.database import ProtectionStatus
from parityguard.errors import ExternalToolExecutionError
from parityguard.par2 import (
    Par2Result,
    Par2Runner,
    RepairCommandBuilder,
    ResourceLimits,
    VerifyCommandBuilder,
)

logger = logging.getLogger(__name__)

VOLUME_FILE_RE = re.compile(r"\.vol\d+\+\d+\.par2$", re.IGNORECASE)

DAMAGED_MARKERS = ("damaged",)
MISSING_MARKERS = ("missing",)
REPAIRED_MARKERS = ("repair complete", "repair is not required", "all files are correct")
NOT_POSSIBLE_MARKERS = ("repair is not possible", "repair not possible")
INSUFFICIENT_MARKERS = ("too many", "not enough recovery blocks", "more recovery blocks")

VERIFY_PROBLEMS = (ProtectionStatus.DAMAGED, ProtectionStatus.MISSING)
REPAIR_PROBLEMS = (ProtectionStatus.MISSING, ProtectionStatus.REPAIR_FAILED)


@dataclass
class CheckOutcome:
    status: ProtectionStatus
    details: str
    entries: list[tuple[str, ProtectionStatus, str]] = field(default_factory=list)


def classify_verify(result: Par2Result) -> ProtectionStatus:
    if result.success:
        return ProtectionStatus.VERIFIED
    if result.contains(*DAMAGED_MARKERS):
        return ProtectionStatus.DAMAGED
    if result.contains(*MISSING_MARKERS):
        return ProtectionStatus.MISSING
    raise ExternalToolExecutionError(
        "Unexpected par2 verify result",
        argv=result.argv,
        returncode=result.returncode,
        output=result.output,
    )


def classify_repair(result: Par2Result) -> ProtectionStatus:
    if result.success or result.contains(*REPAIRED_MARKERS):
        return ProtectionStatus.REPAIRED
    if result.contains(*NOT_POSSIBLE_MARKERS):
        if result.contains(*INSUFFICIENT_MARKERS):
            return ProtectionStatus.MISSING
        return ProtectionStatus.REPAIR_FAILED
    raise ExternalToolExecutionError(
        "Unexpected par2 repair result",
        argv=result.argv,
        returncode=result.returncode,
        output=result.output,
    )


def main_parity_files(parity_dir: Path) -> list[Path]:
    """Index parity files in a directory, skipping recovery volumes."""
    return sorted(
        p for p in parity_dir.glob("*.par2") if p.is_file() and not VOLUME_FILE_RE.search(p.name)
    )


def aggregate_status(statuses: list[ProtectionStatus], repair: bool) -> ProtectionStatus:
    if ProtectionStatus.ERROR in statuses:
        return ProtectionStatus.ERROR
    problems = REPAIR_PROBLEMS if repair else VERIFY_PROBLEMS
    for problem in problems:
        if problem in statuses:
            return problem
    return ProtectionStatus.REPAIRED if repair else ProtectionStatus.VERIFIED


class VerificationOperations:
    """Executes verify/repair for a single parity set or a directory of parity sets."""

    def __init__(self, runner: Par2Runner, limits: ResourceLimits | None = None):
        self.runner = runner
        self.limits = limits or ResourceLimits()

    def verify(self, base_path: Path, par2_path: Path) -> CheckOutcome:
        if par2_path.is_dir():
            return self._fan_out(base_path, par2_path, repair=False)
        result = self._run(VerifyCommandBuilder, base_path, par2_path)
        status = _classified(classify_verify, result)
        logger.info("Verified %s: %s", par2_path, status.value)
        return CheckOutcome(status, _describe(status, result))

    def repair(self, base_path: Path, par2_path: Path) -> CheckOutcome:
        if par2_path.is_dir():
            return self._fan_out(base_path, par2_path, repair=True)
        result = self._run(RepairCommandBuilder, base_path, par2_path)
        status = _classified(classify_repair, result)
        logger.info("Repaired %s: %s", par2_path, status.value)
        return CheckOutcome(status, _describe(status, result))

    def _run(self, builder_cls: type, base_path: Path, par2_path: Path) -> Par2Result:
        builder = builder_cls(self.runner.par2_path, self.limits)
        argv = builder.base_path(str(base_path)).parity_path(str(par2_path)).build_argv()
        return self.runner.run(argv)

    def _fan_out(self, base_path: Path, parity_dir: Path, repair: bool) -> CheckOutcome:
        files = main_parity_files(parity_dir)
        if not files:
            return CheckOutcome(
                ProtectionStatus.ERROR, f"No parity files found in {parity_dir}"
            )

        builder_cls = RepairCommandBuilder if repair else VerifyCommandBuilder
        classify = classify_repair if repair else classify_verify
        entries: list[tuple[str, ProtectionStatus, str]] = []

        for par2_file in files:
            try:
                result = self._run(builder_cls, base_path, par2_file)
                status = classify(result)
                output = result.output
            except ExternalToolExecutionError as e:
                logger.error("par2 failed for %s: argv=%s %s", par2_file, e.argv, e)
                status = ProtectionStatus.ERROR
                output = str(e)
            entries.append((par2_file.name.removesuffix(".par2"), status, output))

        statuses = [status for _, status, _ in entries]
        aggregate = aggregate_status(statuses, repair)
        counts = Counter(statuses)

        if repair:
            summary = (
                f"Repaired: {counts[ProtectionStatus.REPAIRED]}, "
                f"Missing: {counts[ProtectionStatus.MISSING]}, "
                f"Failed: {counts[ProtectionStatus.REPAIR_FAILED]}, "
                f"Error: {counts[ProtectionStatus.ERROR]}"
            )
        else:
            summary = (
                f"Verified: {counts[ProtectionStatus.VERIFIED]}, "
                f"Damaged: {counts[ProtectionStatus.DAMAGED]}, "
                f"Missing: {counts[ProtectionStatus.MISSING]}, "
                f"Error: {counts[ProtectionStatus.ERROR]}"
            )

        lines = [summary, ""]
        lines += [f"{name}: {status.value}" for name, status, _ in entries]
        outputs = [f"--- {name} ---\n{output.strip()}" for name, _, output in entries if output.strip()]
        if outputs:
            lines += ["", *outputs]

        logger.info("%s %s: %s (%s)", "Repair" if repair else "Verify", parity_dir, aggregate.value, summary)
        return CheckOutcome(aggregate, "\n".join(lines), entries)


def _describe(status: ProtectionStatus, result: Par2Result) -> str:
    output = result.output.strip()
    if status in (ProtectionStatus.VERIFIED, ProtectionStatus.REPAIRED) and not output:
        return "All files are correct." if status is ProtectionStatus.VERIFIED else "Repair complete."
    return output


def _classified(classify: Callable[[Par2Result], ProtectionStatus], result: Par2Result) -> ProtectionStatus:
    try:
        return classify(result)
    except ExternalToolExecutionError:
        logger.error(
            "Unexpected par2 result: argv=%s returncode=%d output=%s",
            result.argv,
            result.returncode,
            result.output,
        )
        raise
