"""
complifi/ledger/accounts.py

Account substrate for the compliance program.

Provides the three guarantees the program is written against:

    1. Keyed persistent records   — AccountStore (address → account)
    2. Deterministic addressing   — derive_address(program_id, *seeds)
    3. All-or-nothing execution   — AccountStore.transaction()

Transaction contract, in this exact order:
  1. Acquire the store lock (transactions on one store are serialised)
  2. Stage reads/writes/events on a copy-on-write overlay
  3. On exception: discard overlay and staged events, re-raise
  4. On success:   journal the instruction id, persist snapshot, apply overlay
  5. Publish staged events to every sink, in commit order, then release lock

Events are never published for a transaction that did not commit.
A sink failure propagates to the caller; the commit itself stands.

Processed instruction ids live in an append-only journal beside the
snapshot (one id per line), so a commit costs one appended line no
matter how many instructions came before it. The id is journaled before
the snapshot is written: a crash in between consumes the id without
applying the instruction, never the reverse.
"""

import json
import logging
import os
import threading
import warnings
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from complifi.core.canonical import canonical_hash, canonicalize
from complifi.core.exceptions import (
    AccountAlreadyExists,
    AccountDataInvalid,
    AccountNotFound,
    InstructionReplayed,
    LedgerError,
)
from complifi.core.models import ACCOUNT_KINDS

logger = logging.getLogger(__name__)

Seed = Union[bytes, str]


def derive_address(program_id: str, *seeds: Seed) -> str:
    """
    Deterministically derive a record address from a program id and seeds.

    address = SHA-256(JCS([program_id, "ProgramDerivedAddress", seed_0, ...]))

    bytes seeds are hex-encoded, str seeds are used as-is. The same inputs
    always produce the same address, so at most one record exists per
    (program_id, seeds) combination.
    """
    parts: List[str] = [program_id, "ProgramDerivedAddress"]
    for seed in seeds:
        if isinstance(seed, bytes):
            parts.append(seed.hex())
        elif isinstance(seed, str):
            parts.append(seed)
        else:
            raise TypeError(f"seed must be bytes or str, got {type(seed).__name__}")
    return canonical_hash(parts)


def _encode_account(owner: str, record) -> bytes:
    return canonicalize({
        "owner": owner,
        "kind":  record.KIND,
        "data":  record.to_dict(),
    })


def _decode_account(raw: bytes):
    try:
        envelope = json.loads(raw)
        kind = envelope["kind"]
        data = envelope["data"]
    except (ValueError, KeyError, TypeError) as exc:
        raise AccountDataInvalid(f"Malformed account envelope: {exc}") from exc
    try:
        cls = ACCOUNT_KINDS[kind]
    except (KeyError, TypeError):
        raise AccountDataInvalid(f"Unknown account kind '{kind}'")
    return cls.from_dict(data)


class Transaction:
    """
    Copy-on-write view of an AccountStore for one instruction.

    Reads see staged writes first, then committed data. Nothing is
    visible outside the transaction until the store commits it.
    """

    def __init__(self, store: "AccountStore", owner: str) -> None:
        self._store  = store
        self._owner  = owner
        self._writes: Dict[str, bytes] = {}
        self._events: List[Any]        = []

    def exists(self, address: str) -> bool:
        return address in self._writes or address in self._store._accounts

    def get(self, address: str, kind: Optional[type] = None):
        """
        Load and decode the account at address.
        Raises AccountNotFound if absent, AccountDataInvalid if it does
        not decode (or is not of the requested kind).
        """
        raw = self._writes.get(address)
        if raw is None:
            raw = self._store._accounts.get(address)
        if raw is None:
            raise AccountNotFound(
                "Account not found", {"address": address[:16] + "..."}
            )
        record = _decode_account(raw)
        if kind is not None and not isinstance(record, kind):
            raise AccountDataInvalid(
                f"Expected {kind.__name__}, found {type(record).__name__}",
                {"address": address[:16] + "..."},
            )
        return record

    def create(self, address: str, record) -> None:
        """Stage creation of a new account. Fails if one already exists."""
        if self.exists(address):
            raise AccountAlreadyExists(
                f"{record.KIND} already exists",
                {"address": address[:16] + "..."},
            )
        self._writes[address] = _encode_account(self._owner, record)

    def put(self, address: str, record) -> None:
        """Stage creation or overwrite of an account."""
        self._writes[address] = _encode_account(self._owner, record)

    def emit(self, event) -> None:
        """Stage an event. Published only if the transaction commits."""
        self._events.append(event)


class AccountStore:
    """
    In-process account substrate.

    Accounts are stored as canonical JSON bytes, so two snapshots of the
    store compare equal iff every record is bit-identical.

    When path is given, every commit rewrites a JSON snapshot of the
    accounts atomically (temp file + os.replace) and appends the
    instruction id to `<path>.processed`. Both are reloaded on
    construction.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, sinks=None) -> None:
        self._lock = threading.RLock()
        self._accounts:  Dict[str, bytes] = {}
        self._processed: set             = set()
        self._sinks = list(sinks or [])
        self._path  = Path(path) if path is not None else None

        if self._path is not None:
            self._restore()
            self._restore_processed()

    @property
    def journal_path(self) -> Optional[Path]:
        """Append-only file of processed instruction ids, if persistent."""
        if self._path is None:
            return None
        return self._path.with_name(self._path.name + ".processed")

    # ── Public API ────────────────────────────────────────────

    def add_sink(self, sink) -> None:
        """Register an event sink. Sinks receive events after commit."""
        self._sinks.append(sink)

    @contextmanager
    def transaction(
        self,
        owner:          str,
        instruction_id: Optional[str] = None,
    ) -> Iterator[Transaction]:
        """
        Run one atomic unit of work.

        instruction_id, when given, may be committed only once per store;
        a second transaction for the same id raises InstructionReplayed
        before any work is done.
        """
        with self._lock:
            if instruction_id is not None and instruction_id in self._processed:
                raise InstructionReplayed(
                    "Instruction already processed",
                    {"instruction": instruction_id[:16] + "..."},
                )
            tx = Transaction(self, owner)
            yield tx

            accounts = {**self._accounts, **tx._writes}
            if instruction_id is not None:
                if self._path is not None:
                    self._journal(instruction_id)
                self._processed.add(instruction_id)
            if self._path is not None:
                self._persist(accounts)
            self._accounts = accounts

            for event in tx._events:
                for sink in self._sinks:
                    sink.publish(event)

    def read(self, address: str, kind: Optional[type] = None):
        """Read a committed account outside any transaction."""
        with self._lock:
            return Transaction(self, owner="").get(address, kind)

    def exists(self, address: str) -> bool:
        with self._lock:
            return address in self._accounts

    def snapshot(self) -> Dict[str, bytes]:
        """Copy of every committed account's stored bytes, keyed by address."""
        with self._lock:
            return dict(self._accounts)

    def write_raw(self, address: str, owner: str, record) -> None:
        """
        Store a record directly, bypassing program logic.

        Used for migrations and for loading records produced by an
        earlier deployment. Does not publish events.
        """
        with self._lock:
            accounts = {**self._accounts, address: _encode_account(owner, record)}
            if self._path is not None:
                self._persist(accounts)
            self._accounts = accounts

    def __len__(self) -> int:
        return len(self._accounts)

    # ── Internal ──────────────────────────────────────────────

    def _journal(self, instruction_id: str) -> None:
        """
        Append one processed instruction id to the journal.
        Raises LedgerError on I/O failure; the id is then not consumed.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.journal_path, "a", encoding="utf-8") as f:
                f.write(instruction_id + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise LedgerError(f"Failed to journal instruction id: {exc}") from exc

    def _persist(self, accounts: Dict[str, bytes]) -> None:
        """
        Rewrite the snapshot file atomically.
        Raises LedgerError on any I/O failure; in-memory accounts MUST NOT
        advance if this raises.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        document = {
            "accounts":  {
                address: raw.decode("utf-8")
                for address, raw in sorted(accounts.items())
            },
        }
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise LedgerError(f"Failed to persist account snapshot: {exc}") from exc

    def _restore(self) -> None:
        """
        Load the snapshot file if present.
        A corrupted file leaves the store empty and issues a RuntimeWarning.
        """
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                document = json.load(f)
            accounts = {
                address: raw.encode("utf-8")
                for address, raw in document["accounts"].items()
            }
            for raw in accounts.values():
                _decode_account(raw)
        except (OSError, ValueError, KeyError, AttributeError, AccountDataInvalid) as exc:
            warnings.warn(
                f"AccountStore: could not restore snapshot from {self._path}: {exc}. "
                "Starting with an empty store.",
                RuntimeWarning,
                stacklevel=3,
            )
            return

        self._accounts = accounts
        logger.debug("Restored %d accounts from %s", len(accounts), self._path)

    def _restore_processed(self) -> None:
        """
        Load processed instruction ids from the journal if present.
        Raises LedgerError if the journal exists but cannot be read:
        starting without it would reopen every past instruction to replay.
        """
        journal = self.journal_path
        if not journal.exists():
            return
        try:
            with open(journal, "r", encoding="utf-8") as f:
                self._processed = {line.strip() for line in f if line.strip()}
        except (OSError, UnicodeDecodeError) as exc:
            raise LedgerError(f"Failed to read instruction journal {journal}: {exc}") from exc
        logger.debug("Restored %d processed instruction ids", len(self._processed))
