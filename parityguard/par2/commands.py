"""Argument-vector builders for the par2 create, verify and repair subcommands."""

import logging
import math
import shlex
from dataclasses import dataclass
from typing import Self

from parityguard.config import ProtectionConfig, ResourceLimitsConfig
from parityguard.errors import CommandBuildError

logger = logging.getLogger(__name__)

MAX_BLOCK_COUNT = 32768

IONICE_LEVELS = {"high": 0, "normal": 4, "low": 7}
DEFAULT_IONICE_LEVEL = 4


@dataclass
class ResourceLimits:
    """CPU, memory and I/O limits added to every par2 invocation."""

    cpu_threads: int | None = None
    memory_mb: int | None = None
    parallel_hashing: int | bool | None = None
    io_priority: str | None = None
    ionice_path: str = "/usr/bin/ionice"

    @classmethod
    def from_config(cls, limits: ResourceLimitsConfig, protection: ProtectionConfig) -> Self:
        return cls(
            cpu_threads=limits.max_cpu_usage,
            memory_mb=limits.max_memory_usage,
            parallel_hashing=limits.parallel_file_hashing,
            io_priority=limits.io_priority,
            ionice_path=protection.ionice_path,
        )

    def flags(self, memory_override: int | None = None) -> list[str]:
        args: list[str] = []
        if self.cpu_threads and self.cpu_threads > 0:
            args.append(f"-t{int(self.cpu_threads)}")

        memory = memory_override or self.memory_mb
        if memory and memory > 0:
            args.append(f"-m{int(memory)}")

        if self.parallel_hashing is True:
            args.append("-T")
        elif isinstance(self.parallel_hashing, int) and self.parallel_hashing > 0:
            args.append(f"-T{self.parallel_hashing}")
        return args

    def prefix(self) -> list[str]:
        if not self.io_priority or self.io_priority == "none":
            return []

        level = IONICE_LEVELS.get(self.io_priority)
        if level is None:
            logger.warning("Invalid I/O priority %r, using default", self.io_priority)
            level = DEFAULT_IONICE_LEVEL
        return [self.ionice_path, "-c", "2", "-n", str(level)]


class _CommandBuilder:
    subcommand = ""

    def __init__(self, par2_path: str = "/usr/local/bin/par2", limits: ResourceLimits | None = None):
        self.par2_path = par2_path
        self.limits = limits or ResourceLimits()
        self.reset()

    def reset(self) -> Self:
        self._base_path: str | None = None
        self._parity_path: str | None = None
        self._quiet = True
        return self

    def base_path(self, path: str) -> Self:
        self._base_path = path
        return self

    def parity_path(self, path: str) -> Self:
        self._parity_path = path
        return self

    def quiet(self, quiet: bool = True) -> Self:
        self._quiet = quiet
        return self

    def get_parity_path(self) -> str | None:
        return self._parity_path

    def _head(self, memory_override: int | None = None) -> list[str]:
        argv = self.limits.prefix() + [self.par2_path, self.subcommand]
        if self._quiet:
            argv.append("-q")
        argv.extend(self.limits.flags(memory_override))
        return argv

    def build_argv(self) -> list[str]:
        raise NotImplementedError

    def build_command(self) -> str:
        """Shell-quoted rendering of build_argv(), for logs and display."""
        return shlex.join(self.build_argv())


class _CheckCommandBuilder(_CommandBuilder):
    def build_argv(self) -> list[str]:
        if not self._parity_path:
            raise CommandBuildError(f"Parity path must be set for {self.subcommand} command.")
        if not self._base_path:
            raise CommandBuildError(f"Base path must be set for {self.subcommand} command.")
        return self._head() + ["-B", self._base_path, self._parity_path]


class VerifyCommandBuilder(_CheckCommandBuilder):
    subcommand = "verify"


class RepairCommandBuilder(_CheckCommandBuilder):
    subcommand = "repair"


class CreateCommandBuilder(_CommandBuilder):
    subcommand = "create"

    def reset(self) -> Self:
        super().reset()
        self._redundancy: int | None = None
        self._block_size: int | None = None
        self._block_count: int | None = None
        self._recovery_file_count: int | None = None
        self._first_recovery_number: int | None = None
        self._uniform_file_size = False
        self._memory_limit: int | None = None
        self._source_files: list[str] = []
        return self

    def redundancy(self, percent: int) -> Self:
        if not 1 <= percent <= 100:
            raise CommandBuildError(f"Redundancy must be between 1 and 100, got {percent}")
        self._redundancy = percent
        return self

    def block_size(self, size: int) -> Self:
        self._block_size = size
        return self

    def block_count(self, count: int) -> Self:
        self._block_count = count
        return self

    def recovery_file_count(self, count: int) -> Self:
        self._recovery_file_count = count
        return self

    def first_recovery_number(self, number: int) -> Self:
        self._first_recovery_number = number
        return self

    def uniform_file_size(self, uniform: bool = True) -> Self:
        self._uniform_file_size = uniform
        return self

    def memory_limit(self, megabytes: int) -> Self:
        self._memory_limit = megabytes
        return self

    def add_source_file(self, path: str) -> Self:
        self._source_files.append(path)
        return self

    def add_source_files(self, paths: list[str]) -> Self:
        self._source_files.extend(paths)
        return self

    def reset_source_files(self) -> Self:
        self._source_files = []
        return self

    @property
    def source_files(self) -> list[str]:
        return list(self._source_files)

    def validate_block_count(self, total_bytes: int | None = None) -> None:
        """Reject block layouts past the PAR2 format ceiling before spawning par2."""
        if self._block_size:
            if total_bytes is None:
                return
            count = math.ceil(total_bytes / self._block_size)
            if count > MAX_BLOCK_COUNT:
                raise CommandBuildError(
                    f"Block size {self._block_size} gives {count} blocks for "
                    f"{total_bytes} bytes; par2 allows at most {MAX_BLOCK_COUNT}"
                )
        elif self._block_count is not None and self._block_count > MAX_BLOCK_COUNT:
            raise CommandBuildError(
                f"Block count {self._block_count} exceeds the par2 limit of {MAX_BLOCK_COUNT}"
            )

    def build_argv(self, include_source_files: bool = True) -> list[str]:
        if not self._parity_path:
            raise CommandBuildError("Parity path must be set for create command.")
        if include_source_files and not self._source_files:
            raise CommandBuildError("At least one source file must be added for create command.")
        if not self._base_path:
            raise CommandBuildError("Base path must be set for create command.")
        if self._redundancy is None and self._recovery_file_count is None:
            raise CommandBuildError(
                "Either redundancy or recovery file count must be set for create command."
            )
        self.validate_block_count()

        argv = self._head(self._memory_limit)
        if self._redundancy is not None:
            argv.append(f"-r{self._redundancy}")
        if self._block_size:
            argv.append(f"-s{self._block_size}")
        elif self._block_count:
            argv.append(f"-c{self._block_count}")
        if self._recovery_file_count is not None:
            argv.append(f"-n{self._recovery_file_count}")
        if self._first_recovery_number is not None:
            argv.append(f"-f{self._first_recovery_number}")
        if self._uniform_file_size:
            argv.append("-u")

        argv += ["-B", self._base_path, "-a", self._parity_path]
        if include_source_files:
            argv.append("--")
            argv.extend(self._source_files)
        return argv
