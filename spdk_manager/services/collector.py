import logging
import subprocess
from typing import Any, List, Sequence

from spdk_manager.errors import CollectorError

logger = logging.getLogger(__name__)


def run_command(args: Sequence[str], timeout_seconds: float) -> str:
    """
    Run a host utility and return its stdout.

    Raises CollectorError if the binary is missing, times out or exits
    non-zero.
    """
    try:
        result = subprocess.run(
            list(args),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except FileNotFoundError as exc:
        raise CollectorError(f"{args[0]} binary not found on host system") from exc
    except subprocess.TimeoutExpired as exc:
        raise CollectorError(f"{args[0]} timed out after {timeout_seconds}s") from exc
    except subprocess.CalledProcessError as exc:
        raise CollectorError(
            f"{' '.join(args)} failed with return code {exc.returncode}: {(exc.stderr or '').strip()}"
        ) from exc

    return result.stdout


class Collector:
    """
    One inventory source.

    ``collect`` never raises: a failing source contributes nothing and logs a
    warning, so the rest of the inventory still comes through.
    """

    source_name = "source"

    def _collect(self) -> List[Any]:
        raise NotImplementedError

    def collect(self) -> List[Any]:
        try:
            return self._collect()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not get %s: %s", self.source_name, exc)
            return []
