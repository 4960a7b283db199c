"""Agent step log - append-only audit trail of agent invocations.

Steps are kept in an in-memory index for the read-only activity surface and,
when a log directory is configured, appended to a daily JSONL file whose
entries form a sha256 hash chain.
"""

import hashlib
import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Deque, Dict, List, Optional, Union

from mailpilot.common.constants import AuditConstants
from mailpilot.core.types import AgentRole
from mailpilot.governance.audit.schemas import AgentStep

logger = logging.getLogger(__name__)


class AgentStepLogIntegrityError(Exception):
    """Raised when the step log hash chain does not verify."""
    pass


class AgentStepLog:
    """Records every AgentStep immutably."""

    def __init__(
        self,
        log_dir: Optional[Union[str, Path]] = None,
        log_filename_pattern: str = AuditConstants.STEP_LOG_PATTERN,
        hash_algorithm: str = AuditConstants.HASH_ALGORITHM,
        max_indexed_steps: int = AuditConstants.MAX_INDEXED_STEPS,
    ):
        """Initialize the step log.

        Args:
            log_dir: Directory for JSONL files. In-memory only when None.
            log_filename_pattern: Pattern for log filename. {date} is replaced.
            hash_algorithm: Hash algorithm for the integrity chain.
            max_indexed_steps: Size of the in-memory window; older steps
                stay in the JSONL files only.
        """
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_filename_pattern = log_filename_pattern
        self.hash_algorithm = hash_algorithm

        self._lock = threading.Lock()
        self._steps: Deque[AgentStep] = deque(maxlen=max_indexed_steps)
        self._by_id: Dict[str, AgentStep] = {}
        self._last_hash: Optional[str] = None
        self._evicted = False

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._load_current_log()

    def _get_current_log_path(self) -> Path:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / self.log_filename_pattern.replace("{date}", today)

    def _load_current_log(self) -> None:
        """Rebuild the index and chain head from today's file."""
        log_path = self._get_current_log_path()
        if not log_path.exists():
            return

        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    step = AgentStep.from_jsonl(line)
                except (json.JSONDecodeError, ValueError):
                    logger.warning("Skipping malformed agent step line", extra={"path": str(log_path)})
                    continue
                self._index(step)
                self._last_hash = step.entry_hash

    def _compute_hash(self, content: str) -> str:
        hasher = hashlib.new(self.hash_algorithm)
        hasher.update(content.encode("utf-8"))
        return hasher.hexdigest()

    def _chain(self, step: AgentStep) -> AgentStep:
        step_dict = step.model_dump(mode="json")
        step_dict["previous_hash"] = self._last_hash
        step_dict["entry_hash"] = None
        content_to_hash = json.dumps(step_dict, sort_keys=True, default=str)
        step_dict["entry_hash"] = self._compute_hash(content_to_hash)
        return AgentStep.model_validate(step_dict)

    def record(self, step: AgentStep) -> AgentStep:
        """Append a step (thread-safe). Returns the chained, stored step."""
        with self._lock:
            step = self._chain(step)

            if self.log_dir is not None:
                with open(self._get_current_log_path(), "a") as f:
                    f.write(step.to_jsonl() + "\n")

            self._index(step)
            self._last_hash = step.entry_hash
            return step

    def _index(self, step: AgentStep) -> None:
        if len(self._steps) == self._steps.maxlen:
            self._by_id.pop(self._steps[0].step_id, None)
            self._evicted = True
        self._steps.append(step)
        self._by_id[step.step_id] = step

    def get_step(self, step_id: str) -> Optional[AgentStep]:
        return self._by_id.get(step_id)

    def list_steps(
        self,
        deliberation_id: Optional[str] = None,
        role: Optional[AgentRole] = None,
        limit: Optional[int] = AuditConstants.DEFAULT_LIST_LIMIT,
    ) -> List[AgentStep]:
        """Most recent steps first, optionally filtered."""
        with self._lock:
            steps = list(self._steps)

        result = []
        for step in reversed(steps):
            if deliberation_id and step.deliberation_id != deliberation_id:
                continue
            if role and step.role != role:
                continue
            result.append(step)
            if limit is not None and len(result) >= limit:
                break
        return result

    def count(self) -> int:
        return len(self._steps)

    def verify_integrity(self) -> bool:
        """Verify the hash chain of the in-memory window."""
        with self._lock:
            steps = list(self._steps)
            evicted = self._evicted
        # After eviction the window starts mid-chain
        previous_hash = steps[0].previous_hash if evicted and steps else None

        for position, step in enumerate(steps, start=1):
            if step.previous_hash != previous_hash:
                raise AgentStepLogIntegrityError(
                    f"Hash chain broken at step {position}. "
                    f"Expected previous_hash={previous_hash}, got {step.previous_hash}"
                )
            step_dict = step.model_dump(mode="json")
            step_dict["entry_hash"] = None
            computed = self._compute_hash(json.dumps(step_dict, sort_keys=True, default=str))
            if computed != step.entry_hash:
                raise AgentStepLogIntegrityError(
                    f"Entry hash mismatch at step {position}. Step may have been tampered with."
                )
            previous_hash = step.entry_hash

        return True
