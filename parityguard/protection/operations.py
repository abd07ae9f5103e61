"""par2 create invocations and parity-file layout on disk."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from parityguard.config import ProtectionConfig
from parityguard.errors import AlreadyProtectedError, ExternalToolExecutionError, UserInputError
from parityguard.metadata import iter_files
from parityguard.par2 import CreateCommandBuilder, Par2Runner, ResourceLimits

logger = logging.getLogger(__name__)

ALREADY_EXISTS_MARKER = "par2 files already exist"


@dataclass
class AdvancedSettings:
    block_count: int | None = None
    block_size: int | None = None
    target_size: int | None = None
    recovery_files: int | None = None

    def apply(self, builder: CreateCommandBuilder) -> None:
        if self.block_count:
            builder.block_count(self.block_count)
        if self.block_size:
            builder.block_size(self.block_size)
        if self.target_size:
            builder.memory_limit(self.target_size)
        if self.recovery_files:
            builder.recovery_file_count(self.recovery_files)


@dataclass
class CreateResult:
    par2_path: Path
    source_files: list[Path]
    errors: list[str] = field(default_factory=list)


def parity_base_name(path: Path) -> str:
    """``data`` for a directory, ``notes.txt`` for a file: suffixes keep siblings apart."""
    return path.name or "protection"


def parity_set_files(par2_path: Path) -> list[Path]:
    """The index file of a parity set plus its ``.volNN+NN.par2`` volumes."""
    if not par2_path.parent.is_dir():
        return []
    volume_prefix = par2_path.name.removesuffix(".par2") + ".vol"
    return [
        p
        for p in par2_path.parent.iterdir()
        if p.name == par2_path.name or (p.name.startswith(volume_prefix) and p.suffix == ".par2")
    ]


def individual_parity_name(file_path: Path, root: Path) -> str:
    relative = file_path.relative_to(root)
    return "__".join(relative.parts) + ".par2"


class ParityOperations:
    """Creates and deletes parity data for files, directories and file selections."""

    def __init__(
        self,
        runner: Par2Runner,
        settings: ProtectionConfig | None = None,
        limits: ResourceLimits | None = None,
    ):
        self.runner = runner
        self.settings = settings or ProtectionConfig()
        self.limits = limits or ResourceLimits()

    def _builder(self, redundancy: int, advanced: AdvancedSettings | None) -> CreateCommandBuilder:
        builder = CreateCommandBuilder(self.runner.par2_path, self.limits)
        builder.redundancy(redundancy).quiet(True)
        if advanced:
            advanced.apply(builder)
        return builder

    def parity_dir_for(self, path: Path) -> Path:
        if path.is_dir():
            return path / self.settings.parity_dir
        return path.parent / self.settings.parity_dir

    def individual_parity_dir(self, path: Path, category: str) -> Path:
        return path / f"{self.settings.parity_dir}-{category}"

    def find_source_files(self, path: Path, extensions: list[str] | None = None) -> list[Path]:
        return list(
            iter_files(
                path,
                parity_dir=self.settings.parity_dir,
                extensions=set(extensions) if extensions else None,
            )
        )

    def create(
        self,
        path: Path,
        redundancy: int,
        advanced: AdvancedSettings | None = None,
    ) -> CreateResult:
        """Create parity data for a single file or a whole directory.

        Directories with more than ``batch_size`` files get one parity set per
        batch (``<name>.partNNN.par2``) in a dedicated ``<parity_dir>-batched``
        directory, which is returned as the parity path.
        """
        parity_dir = self.parity_dir_for(path)
        base_name = parity_base_name(path)

        if path.is_dir():
            base_path = path
            files = self.find_source_files(path)
            if not files:
                raise UserInputError(f"No files found to protect in directory: {path}")
        else:
            base_path = path.parent
            files = [path]

        batch_size = max(1, self.settings.batch_size)
        batches = [files[i : i + batch_size] for i in range(0, len(files), batch_size)]
        if len(batches) == 1:
            targets = [parity_dir / f"{base_name}.par2"]
        else:
            parity_dir = parity_dir.with_name(f"{self.settings.parity_dir}-batched")
            targets = [parity_dir / f"{base_name}.part{n:03d}.par2" for n in range(1, len(batches) + 1)]

        parity_dir.mkdir(parents=True, exist_ok=True)
        created: list[Path] = []
        try:
            for batch, target in zip(batches, targets):
                builder = self._builder(redundancy, advanced)
                builder.base_path(str(base_path)).parity_path(str(target))
                builder.add_source_files([str(f) for f in batch])
                builder.validate_block_count(_total_size(batch))
                self._execute(builder.build_argv())
                created.append(target)
        except (ExternalToolExecutionError, UserInputError):
            self._discard(created, parity_dir)
            raise

        par2_path = targets[0] if len(targets) == 1 else parity_dir
        logger.info("Created parity data for %s (%d files) at %s", path, len(files), par2_path)
        return CreateResult(par2_path=par2_path, source_files=files)

    def create_individual(
        self,
        path: Path,
        redundancy: int,
        extensions: list[str],
        category: str,
        advanced: AdvancedSettings | None = None,
    ) -> CreateResult:
        """Create one parity set per matching file under ``path``.

        Per-file failures are collected in ``errors``; an empty file selection
        returns an empty ``source_files`` list without touching the disk.
        """
        parity_dir = self.individual_parity_dir(path, category)
        files = self.find_source_files(path, extensions)
        if not files:
            return CreateResult(par2_path=parity_dir, source_files=[])

        parity_dir.mkdir(parents=True, exist_ok=True)
        protected: list[Path] = []
        errors: list[str] = []

        for file_path in files:
            target = parity_dir / individual_parity_name(file_path, path)
            builder = self._builder(redundancy, advanced)
            builder.base_path(str(path)).parity_path(str(target)).add_source_file(str(file_path))
            try:
                builder.validate_block_count(file_path.stat().st_size)
                self._execute(builder.build_argv())
            except AlreadyProtectedError:
                logger.info("Parity data already exists for %s", file_path)
                protected.append(file_path)
                continue
            except (ExternalToolExecutionError, UserInputError, OSError) as e:
                logger.error("Failed to protect individual file %s: %s", file_path, e)
                errors.append(f"{file_path.name}: {e}")
                continue
            protected.append(file_path)

        logger.info(
            "Protected %d of %d individual files under %s", len(protected), len(files), path
        )
        return CreateResult(par2_path=parity_dir, source_files=protected, errors=errors)

    def _execute(self, argv: list[str]) -> None:
        result = self.runner.run(argv)
        if result.contains(ALREADY_EXISTS_MARKER):
            raise AlreadyProtectedError(f"PAR2 files already exist: {argv[-1]}")
        if not result.success:
            logger.error(
                "par2 create failed: argv=%s returncode=%d output=%s",
                argv,
                result.returncode,
                result.output,
            )
            raise ExternalToolExecutionError(
                "par2 create failed", argv=argv, returncode=result.returncode, output=result.output
            )

    def _discard(self, targets: list[Path], parity_dir: Path) -> None:
        for target in targets:
            for candidate in parity_set_files(target):
                candidate.unlink(missing_ok=True)
        if parity_dir.is_dir() and not any(parity_dir.iterdir()):
            parity_dir.rmdir()

    def remove_parity(self, par2_path: Path) -> bool:
        """Delete parity data. Already-missing data counts as removed.

        A parity directory (individual files or batched sets, recognised by a
        path without the ``.par2`` suffix) is deleted as a tree; a single
        parity set only loses its own index and volume files.
        """
        if par2_path.is_dir() or par2_path.suffix != ".par2":
            if not self._looks_like_parity_dir(par2_path):
                logger.error("Refusing to delete %s: not a parity directory", par2_path)
                return False
            if not par2_path.exists():
                logger.warning("Parity directory not found, nothing to remove: %s", par2_path)
                return True
            shutil.rmtree(par2_path)
            logger.info("Removed parity directory %s", par2_path)
            return True

        parity_dir = par2_path.parent
        if not parity_dir.is_dir():
            logger.warning("Parity data not found, nothing to remove: %s", par2_path)
            return True
        if not self._looks_like_parity_dir(parity_dir):
            logger.error("Refusing to delete parity files outside a parity directory: %s", par2_path)
            return False

        self._discard([par2_path], parity_dir)
        logger.info("Removed parity set %s", par2_path)
        return True

    def _looks_like_parity_dir(self, target: Path) -> bool:
        name = target.name
        return name == self.settings.parity_dir or name.startswith(f"{self.settings.parity_dir}-")


def _total_size(files: list[Path]) -> int:
    total = 0
    for file_path in files:
        try:
            total += os.path.getsize(file_path)
        except OSError:
            continue
    return total
