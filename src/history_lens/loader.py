"""Load query payloads produced by the external history store."""

import json
import logging
import subprocess
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from .config import PROGRESS_TICK_PREFIX, PROGRESS_TOTAL_PREFIX
from .models import ConversationAnnotation, HistoryPayload, Message, TreeNode

logger = logging.getLogger(__name__)


class HistoryLensError(Exception):
    """Base error for History Lens."""


class PayloadError(HistoryLensError):
    """Raised when a whole payload cannot be read or decoded."""


def _validate_records(
    model: type[BaseModel], records: Any, kind: str
) -> tuple[list[Any], int]:
    """Validate each record once, dropping malformed ones."""
    if not isinstance(records, list):
        return [], 0

    valid = []
    skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            valid.append(model.model_validate(record))
        except ValidationError as e:
            skipped += 1
            logger.debug(f"Skipping malformed {kind} record: {e.error_count()} error(s)")
    return valid, skipped


def parse_payload(data: dict | str | bytes) -> HistoryPayload:
    """Parse a store query result into typed records.

    Malformed messages, nodes and conversation rows are excluded and counted
    rather than raised; only an undecodable payload raises.

    Raises:
        PayloadError: If data is not JSON or not a JSON object
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PayloadError(f"Payload must be a JSON object, got {type(data).__name__}")

    conversations, skipped_conversations = _validate_records(
        ConversationAnnotation, data.get("conversations"), "conversation"
    )
    messages, skipped_messages = _validate_records(Message, data.get("messages"), "message")

    has_tree = bool(data.get("hasTree", data.get("has_tree", False)))
    nodes: list[TreeNode] = []
    skipped_nodes = 0
    if has_tree:
        nodes, skipped_nodes = _validate_records(TreeNode, data.get("nodes"), "tree node")

    if skipped_messages or skipped_nodes:
        logger.warning(
            f"Excluded {skipped_messages} malformed messages and {skipped_nodes} malformed tree nodes"
        )

    return HistoryPayload(
        conversations=conversations,
        messages=messages,
        nodes=nodes,
        has_tree=has_tree and bool(nodes),
        schema_name=str(data.get("schema") or ""),
        skipped_conversations=skipped_conversations,
        skipped_messages=skipped_messages,
        skipped_nodes=skipped_nodes,
    )


def load_payload(path: Path | str) -> HistoryPayload:
    """Load a payload from a JSON file."""
    try:
        with open(path, encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise PayloadError(f"Cannot read payload {path}: {e}") from e

    payload = parse_payload(raw)
    logger.info(
        f"Loaded {len(payload.messages)} messages, {len(payload.nodes)} tree nodes from {path}"
    )
    return payload


def load_source_labels(path: Path | str | None) -> dict[str, str]:
    """Load the source-id -> label mapping.

    Accepts either {"id": "label"} or a list of {"id", "label"} objects as
    stored in the plugin settings. Missing or broken files yield {}.
    """
    if not path:
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return {}

    if isinstance(data, dict):
        return {str(k): str(v) for k, v in data.items() if v}

    labels = {}
    if isinstance(data, list):
        for source in data:
            if isinstance(source, dict) and source.get("id"):
                labels[str(source["id"])] = str(source.get("label") or source["id"])
    return labels


class ProgressTracker:
    """Consumes PROGRESS:TOTAL / PROGRESS:TICK lines from the acquisition layer."""

    def __init__(self, on_progress: Callable[[int, int], None] | None = None):
        self.total = 0
        self.done = 0
        self._on_progress = on_progress

    def feed(self, line: str) -> bool:
        """Handle one output line. Returns True if it was a progress line."""
        line = line.strip()
        if line.startswith(PROGRESS_TOTAL_PREFIX):
            try:
                self.total = int(line[len(PROGRESS_TOTAL_PREFIX) :])
            except ValueError:
                return False
            self._notify()
            return True

        if line.startswith(PROGRESS_TICK_PREFIX):
            parts = line[len(PROGRESS_TICK_PREFIX) :].split(":")
            if len(parts) < 2:
                return False
            try:
                done, total = int(parts[0]), int(parts[1])
            except ValueError:
                return False
            self.done, self.total = done, total
            self._notify()
            return True

        return False

    def feed_lines(self, lines: Iterable[str]) -> list[str]:
        """Feed many lines, returning the ones that were not progress lines."""
        return [line for line in lines if not self.feed(line)]

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return min(self.done / self.total, 1.0)

    def _notify(self):
        if self._on_progress is not None:
            self._on_progress(self.done, self.total)


def acquire_payload(
    command: list[str],
    on_progress: Callable[[int, int], None] | None = None,
    timeout: float | None = None,
) -> HistoryPayload:
    """Run an external store query and parse its JSON output.

    The command prints the payload on stdout and progress lines on stderr.
    stderr is read while the command runs, so on_progress fires as ticks
    arrive rather than after the command exits. The callback runs on the
    reader thread.

    Raises:
        PayloadError: If the command fails or prints something that isn't a payload
    """
    tracker = ProgressTracker(on_progress)
    try:
        proc = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as e:
        raise PayloadError(f"Cannot start query command {command[0]!r}: {e}") from e

    stdout_parts: list[str] = []
    other: list[str] = []

    def _read_stdout():
        stdout_parts.append(proc.stdout.read())

    def _read_stderr():
        for line in proc.stderr:
            if not tracker.feed(line):
                other.append(line.rstrip("\n"))

    readers = [
        threading.Thread(target=_read_stdout, daemon=True),
        threading.Thread(target=_read_stderr, daemon=True),
    ]
    for reader in readers:
        reader.start()

    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.wait()
        raise PayloadError(f"Query command timed out after {timeout}s") from e
    finally:
        for reader in readers:
            reader.join()
        proc.stdout.close()
        proc.stderr.close()

    stdout = "".join(stdout_parts)
    if proc.returncode != 0:
        detail = "\n".join(other[-5:])
        raise PayloadError(f"Query command exited with code {proc.returncode}: {detail}")

    return parse_payload(stdout)
