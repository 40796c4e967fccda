"""
Durable JSON checkpoint of a deployment.

The file wraps the deployment state with a SHA-256 digest of its canonical
JSON encoding. Writes go to a temporary file in the same directory which
then replaces the checkpoint, so a crash never leaves a half-written file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from tokendist.core.exceptions import CorruptedStateError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def state_digest(state: dict[str, Any]) -> str:
    encoded = json.dumps(state, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()


class StateStore:
    """Single-file checkpoint store."""

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, state: dict[str, Any]) -> str:
        """
        Save ``state`` atomically.

        Returns:
            Hex digest stored alongside the state
        """
        digest = state_digest(state)
        payload = {"version": FORMAT_VERSION, "digest": digest, "state": state}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise
        logger.debug(
            "Checkpoint saved: %s",
            self.path,
            extra={"event": "state.saved", "digest": digest[:16]},
        )
        return digest

    def load(self) -> dict[str, Any]:
        """
        Load and verify the checkpoint.

        Raises:
            FileNotFoundError: If no checkpoint exists
            CorruptedStateError: If the file does not parse or fails its digest
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as exc:
            raise CorruptedStateError(f"Checkpoint {self.path} is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict) or "state" not in payload or "digest" not in payload:
            raise CorruptedStateError(f"Checkpoint {self.path} is missing state or digest")
        if payload.get("version") != FORMAT_VERSION:
            raise CorruptedStateError(
                f"Unsupported checkpoint version {payload.get('version')!r}",
                details={"path": str(self.path)},
            )
        state = payload["state"]
        if state_digest(state) != payload["digest"]:
            raise CorruptedStateError(
                f"Checkpoint integrity verification failed for {self.path}",
                details={"path": str(self.path)},
            )
        logger.debug("Checkpoint loaded: %s", self.path, extra={"event": "state.loaded"})
        return state
