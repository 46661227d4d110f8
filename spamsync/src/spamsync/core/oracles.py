"""SpamAssassin process wrappers.

What:
  Drive the two external SpamAssassin tools the daemon depends on:
  ``spamc -c`` to score a single message and ``sa-learn`` to train the Bayes
  database from a directory of messages.

Why:
  Both tools are black boxes with loose textual protocols. Isolating the
  process handling and the output parsing keeps the decision logic in
  :mod:`spamsync.core.strategies` free of subprocess plumbing, and lets tests
  substitute the oracles wholesale.

How:
  :class:`ClassifierOracle` pipes the message bytes to ``spamc`` through
  :func:`subprocess.run` and parses the trailing ``score/threshold`` pair into a
  :class:`ScoreResult`. :class:`TrainerOracle` spawns ``sa-learn`` with
  :class:`subprocess.Popen`, drains stdout on a reader thread and parses the
  dot-based progress printed on stderr.

Interfaces:
  :class:`ScoreResult`, :func:`parse_score`, :class:`ClassifierOracle`,
  :class:`TrainMode`, :class:`TrainResult`, :class:`ProgressCounter`,
  :class:`TrainerOracle`, :class:`TrainerError`.

Invariants & Safety:
  - Scoring never raises for process or parsing problems; it degrades to
    :meth:`ScoreResult.unknown`.
  - ``0/0`` is a degenerate answer (spamd unreachable), never a genuine score.
  - Training an empty directory fails before any process is spawned.
  - Oracle invocations have no timeout beyond the process's own exit.
"""
from __future__ import annotations

import re
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..utils.logging import get_logger


_SCORE_PATTERN = re.compile(r"(-?\d+(?:\.\d+)?)/(-?\d+(?:\.\d+)?)\s*$")
_PROGRESS_LINE = re.compile(r"^\.+$", re.MULTILINE)
# spamc -c exits 1 for spam and 0 for ham; anything else is a client failure.
SPAMC_SCORE_CODES = (0, 1)


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one message.

    What:
      Either a known ``(score, required)`` pair or the ``Unknown`` marker.

    Why:
      A sentinel value such as ``-1`` would be indistinguishable from a real
      negative SpamAssassin score; an explicit flag keeps the two apart.
    """

    score: Optional[float] = None
    required: Optional[float] = None

    @classmethod
    def known(cls, score: float, required: float) -> "ScoreResult":
        return cls(score=score, required=required)

    @classmethod
    def unknown(cls) -> "ScoreResult":
        return cls()

    @property
    def is_known(self) -> bool:
        return self.score is not None

    def __str__(self) -> str:
        if not self.is_known:
            return "unknown"
        return f"{self.score}/{self.required}"


def parse_score(output: str) -> ScoreResult:
    """Parse ``spamc -c`` output into a :class:`ScoreResult`.

    What:
      Looks for a trailing ``<score>/<threshold>`` pair, accepting signed
      decimals.

    Returns:
      ``Unknown`` when nothing matches or when both values are zero.
    """

    match = _SCORE_PATTERN.search(output.strip())
    if match is None:
        return ScoreResult.unknown()
    score = float(match.group(1))
    required = float(match.group(2))
    if score == 0 and required == 0:
        return ScoreResult.unknown()
    return ScoreResult.known(score, required)


class ClassifierOracle:
    """Score messages with ``spamc``.

    Attributes:
      executable: Path or name of the ``spamc`` binary.
      args: Extra arguments, ``-c`` by default (print ``score/threshold``).
    """

    def __init__(self, executable: str = "spamc", args: Sequence[str] = ("-c",)):
        self.executable = executable
        self.args = tuple(args)
        self._log = get_logger("oracle.spamc")

    def score(self, message_path: Path | str) -> ScoreResult:
        """Score the message stored at ``message_path``.

        What:
          Spawns the scorer, writes the raw message to its stdin, and parses its
          stdout.

        Why:
          The inbox classifier only needs a score; every failure mode of the
          external tool collapses into ``Unknown`` so the caller treats the
          message conservatively.

        Args:
          message_path: File holding the raw RFC 822 message.

        Returns:
          The parsed :class:`ScoreResult`.

        Raises:
          OSError: If ``message_path`` cannot be read.
        """

        data = Path(message_path).read_bytes()
        argv = [self.executable, *self.args]
        try:
            completed = subprocess.run(argv, input=data, capture_output=True, check=False)
        except OSError as exc:
            self._log.error("spamc_spawn_failed", executable=self.executable, error=str(exc))
            return ScoreResult.unknown()
        if completed.returncode not in SPAMC_SCORE_CODES:
            self._log.warning(
                "spamc_failed",
                code=completed.returncode,
                stderr=completed.stderr.decode("utf-8", errors="replace").strip(),
            )
            return ScoreResult.unknown()
        return parse_score(completed.stdout.decode("utf-8", errors="replace"))


class TrainMode(str, Enum):
    """Label passed to ``sa-learn``."""

    SPAM = "spam"
    HAM = "ham"


class TrainerError(RuntimeError):
    """Raised when training cannot be started."""


@dataclass(frozen=True)
class TrainResult:
    """Exit code and combined output of one ``sa-learn`` run."""

    code: int
    output: str
    processed: int = 0
    total: int = 0

    @property
    def ok(self) -> bool:
        return self.code == 0


class ProgressCounter:
    """Turn ``sa-learn --progress`` stderr chunks into a running total.

    Every dot stands for one processed message. Chunks that do not contain a
    dot-only line are ignored, and the total is clamped to the number of files
    handed to ``sa-learn``.
    """

    def __init__(self, total: int):
        self.total = total
        self.processed = 0

    def feed(self, chunk: str) -> bool:
        """Account for ``chunk``; return whether it was progress output."""

        if _PROGRESS_LINE.search(chunk.strip()) is None:
            return False
        self.processed = min(self.processed + chunk.count("."), self.total)
        return True

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return (self.processed * 100) // self.total


class TrainerOracle:
    """Train the SpamAssassin Bayes database with ``sa-learn``."""

    def __init__(self, executable: str = "sa-learn"):
        self.executable = executable
        self._log = get_logger("oracle.sa-learn")

    def train(
        self,
        directory: Path | str,
        mode: TrainMode,
        *,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> TrainResult:
        """Learn every message in ``directory`` as ``mode``.

        What:
          Runs ``sa-learn --<mode> --progress <directory>`` and reports its
          exit code together with stdout and any non-progress stderr text.

        Why:
          Bulk submission of a directory is an order of magnitude faster than
          one ``sa-learn`` call per message.

        How:
          A reader thread drains stdout while the calling thread reads stderr
          incrementally and feeds a :class:`ProgressCounter`, logging the
          percentage after every progress chunk.

        Args:
          directory: Directory holding one message per file.
          mode: :class:`TrainMode` to learn as.
          on_progress: Optional ``(processed, total)`` callback.

        Returns:
          The :class:`TrainResult` of the run (non-zero codes included).

        Raises:
          TrainerError: If the directory is empty or the process cannot be
            spawned.
        """

        mode = TrainMode(mode)
        path = Path(directory)
        total = sum(1 for entry in path.iterdir() if entry.is_file())
        if total == 0:
            raise TrainerError(f"Mail path {path} does not contain any files")

        argv = [self.executable, f"--{mode.value}", "--progress", str(path)]
        self._log.info("learning", mode=mode.value, total=total)
        counter = ProgressCounter(total)
        stdout_chunks: List[bytes] = []
        other_stderr: List[str] = []
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as exc:
            raise TrainerError(f"Unable to start {self.executable}: {exc}") from exc

        with proc:
            reader = threading.Thread(target=lambda: stdout_chunks.append(proc.stdout.read()), daemon=True)
            reader.start()
            for raw in iter(lambda: proc.stderr.read1(4096), b""):
                text = raw.decode("utf-8", errors="replace")
                if counter.feed(text):
                    self._log.info(
                        "learn_progress",
                        percent=counter.percent,
                        processed=counter.processed,
                        total=total,
                    )
                    if on_progress is not None:
                        on_progress(counter.processed, total)
                else:
                    other_stderr.append(text)
            code = proc.wait()
            reader.join()

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        output = (stdout + "".join(other_stderr)).strip()
        result = TrainResult(code=code, output=output, processed=counter.processed, total=total)
        if result.ok:
            self._log.info("learned", mode=mode.value, output=output)
        else:
            self._log.error("learn_failed", mode=mode.value, code=code, output=output)
        return result
