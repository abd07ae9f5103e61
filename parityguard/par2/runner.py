"""par2 executable wrapper."""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass

from parityguard.errors import ExternalToolExecutionError, Par2NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Par2Result:
    """Result of one par2 invocation. ``output`` holds stdout and stderr combined."""

    argv: list[str]
    returncode: int
    output: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def contains(self, *markers: str) -> bool:
        text = self.output.lower()
        return any(marker.lower() in text for marker in markers)


class Par2Runner:
    """Runs par2 argument vectors without a shell."""

    def __init__(self, par2_path: str = "/usr/local/bin/par2") -> None:
        self.par2_path = self._check_par2(par2_path)

    def _check_par2(self, par2_path: str) -> str:
        if os.path.isfile(par2_path) and os.access(par2_path, os.X_OK):
            return par2_path

        path = shutil.which(par2_path) or shutil.which("par2")
        if not path:
            raise Par2NotFoundError(
                f"par2 is required but not found at {par2_path}.\n"
                "Please install par2cmdline: https://github.com/Parchive/par2cmdline"
            )
        return path

    def run(self, argv: list[str]) -> Par2Result:
        logger.debug("Executing par2 command: %s", argv)
        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as e:
            raise ExternalToolExecutionError(f"Failed to execute par2: {e}", argv=argv) from e

        return Par2Result(argv=argv, returncode=result.returncode, output=result.stdout or "")
