"""
complifi/ledger/events.py

Audit event sinks.

The compliance program publishes one event per successful verification,
one per recorded violation and one per attestation upsert. Sinks receive
events only after the producing transaction has committed (see
AccountStore.transaction). Persistence, querying and aggregation beyond
this module belong to the downstream audit service.

EventLog contract — publish() MUST, in this exact order:
  1. Acquire lock
  2. Build the entry: sequence, event_type, timestamp, causal_hash, payload
  3. Sign the canonical bytes of the entry (everything except signature)
  4. Append one JSON line to the log file
  5. Advance sequence and chain head, only after confirmed write
"""

import json
import threading
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from complifi.core.canonical import canonical_hash, canonicalize
from complifi.core.crypto import Ed25519KeyManager
from complifi.core.models import event_from_dict
from complifi.core.time import wire_timestamp

GENESIS_HASH = "0" * 64


class EventSink:
    """Interface for audit event consumers."""

    def publish(self, event) -> None:
        raise NotImplementedError


class MemoryEventSink(EventSink):
    """Keeps published events in a list, in publication order."""

    def __init__(self) -> None:
        self.events: List[Any] = []

    def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Any]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


@dataclass
class EventLogEntry:
    """One signed, hash-chained line of the event log."""

    sequence:          int
    event_type:        str
    timestamp:         str
    causal_hash:       str
    payload:           Dict[str, Any]
    signer_public_key: str
    signature:         Optional[str] = None

    def to_signing_dict(self) -> Dict[str, Any]:
        """The exact dict that is signed and that the next entry chains to."""
        return {
            "sequence":          self.sequence,
            "event_type":        self.event_type,
            "timestamp":         self.timestamp,
            "causal_hash":       self.causal_hash,
            "payload":           self.payload,
            "signer_public_key": self.signer_public_key,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventLogEntry":
        return cls(
            sequence=          data["sequence"],
            event_type=        data["event_type"],
            timestamp=         data["timestamp"],
            causal_hash=       data["causal_hash"],
            payload=           data["payload"],
            signer_public_key= data["signer_public_key"],
            signature=         data.get("signature"),
        )

    def chain_hash(self) -> str:
        """causal_hash the NEXT entry must carry."""
        return canonical_hash(self.to_signing_dict())

    def verify_signature(self) -> bool:
        if not self.signature:
            return False
        return Ed25519KeyManager.verify_detached(
            canonicalize(self.to_signing_dict()),
            self.signature,
            self.signer_public_key,
        )

    def to_event(self):
        return event_from_dict(self.event_type, self.payload)


class EventLog(EventSink):
    """
    Append-only, signed, hash-chained JSONL event log.

    Thread-safe via internal lock (single-process only).
    State survives process restart by reading the last line on __init__.
    """

    def __init__(
        self,
        path:        Union[str, Path],
        key_manager: Ed25519KeyManager,
    ) -> None:
        self.key_manager = key_manager
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        self._lock       = threading.Lock()
        self._sequence   = 0
        self._chain_head = GENESIS_HASH

        self._restore_state()

    @property
    def path(self) -> Path:
        return self._path

    # ── Public API ────────────────────────────────────────────

    def publish(self, event) -> EventLogEntry:
        """
        Append one signed entry for event.
        Raises RuntimeError on write failure; state does not advance.
        """
        with self._lock:
            entry = EventLogEntry(
                sequence=          self._sequence,
                event_type=        event.event_type,
                timestamp=         wire_timestamp(),
                causal_hash=       self._chain_head,
                payload=           event.to_dict(),
                signer_public_key= self.key_manager.public_key_hex,
            )
            entry.signature = self.key_manager.sign(
                canonicalize(entry.to_signing_dict())
            )

            try:
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry.to_dict()) + "\n")
            except OSError as exc:
                raise RuntimeError(f"EventLog: write failed — {exc}") from exc

            self._sequence  += 1
            self._chain_head = entry.chain_hash()
            return entry

    def entries(self) -> List[EventLogEntry]:
        """Read every entry from disk. Raises ValueError on a malformed line."""
        if not self._path.exists():
            return []
        result = []
        with open(self._path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    result.append(EventLogEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError) as exc:
                    raise ValueError(f"Malformed event log line {line_num}: {exc}") from exc
        return result

    def verify_chain(self, trusted_signers: Optional[Iterable[str]] = None) -> bool:
        """
        Verify the whole log from genesis.

        For each entry verifies:
            - sequence is strictly sequential from 0
            - causal_hash matches the previous entry's chain hash
            - signature is valid against the embedded signer key
            - the signer is one of trusted_signers, when given

        Without trusted_signers a log rewritten and re-signed end to end
        under a fresh key still verifies; pass the expected identities
        to rule that out.

        Returns True if intact, False on any violation or unreadable line.
        """
        try:
            entries = self.entries()
        except ValueError:
            return False

        trusted = set(trusted_signers) if trusted_signers is not None else None
        expected_hash = GENESIS_HASH
        for index, entry in enumerate(entries):
            if trusted is not None and entry.signer_public_key not in trusted:
                return False
            if entry.sequence != index:
                return False
            if entry.causal_hash != expected_hash:
                return False
            if not entry.verify_signature():
                return False
            expected_hash = entry.chain_hash()
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Current log state snapshot."""
        return {
            "path":          str(self._path),
            "next_sequence": self._sequence,
            "chain_head":    self._chain_head,
            "signer":        self.key_manager.public_key_hex,
        }

    # ── Internal ──────────────────────────────────────────────

    def _restore_state(self) -> None:
        """
        Restore sequence and chain head from the last line.
        If the last line is corrupted, state stays at genesis defaults
        and a RuntimeWarning is issued.
        """
        if not self._path.exists():
            return

        last_line = None
        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if stripped:
                    last_line = stripped

        if not last_line:
            return

        try:
            entry = EventLogEntry.from_dict(json.loads(last_line))
            self._sequence   = entry.sequence + 1
            self._chain_head = entry.chain_hash()
        except (ValueError, KeyError, TypeError) as exc:
            warnings.warn(
                f"EventLog: could not restore state from {self._path}: {exc}. "
                "Last line may be corrupted. Call verify_chain() before publishing.",
                RuntimeWarning,
                stacklevel=3,
            )
