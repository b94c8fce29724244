"""
complifi/core/models.py

CompliFi Data Model

Three account kinds are stored by the program, plus three event kinds
that are published after a successful instruction commits.

    ComplianceState    — singleton, authority + two monotonic counters
    CompliancePolicy   — singleton, authority + risk ceiling + KYC flag + bitmap
    KycAttestation     — one per wallet, at derive_address(KYC_ATTESTATION_SEED, wallet)

STORAGE CONTRACT
    to_dict()   → JSON-primitive dict (bitmaps as lowercase hex)
    from_dict() → validates every field, raises AccountDataInvalid on any mismatch
    Stored bytes are canonicalize(account envelope) — see ledger/accounts.py.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

from complifi.core.crypto import is_identity
from complifi.core.exceptions import AccountDataInvalid
from complifi.core.jurisdiction import BITMAP_BYTES, codes_from_bitmap, empty_bitmap


# ─────────────────────────────────────────────────────────────
# Seeds and limits
# ─────────────────────────────────────────────────────────────

STATE_SEED           = b"compliance-state"
POLICY_SEED          = b"compliance-policy"
KYC_ATTESTATION_SEED = b"kyc-attestation"

MAX_RISK_SCORE = 100
MAX_LABEL_BYTES = 200


# ─────────────────────────────────────────────────────────────
# Field validation helpers
# ─────────────────────────────────────────────────────────────

def _field(data: Dict[str, Any], kind: str, name: str, expected: type) -> Any:
    if not isinstance(data, dict) or name not in data:
        raise AccountDataInvalid(
            f"{kind}: missing field '{name}'", {"kind": kind}
        )
    value = data[name]
    # bool is a subclass of int; never accept one for the other
    if expected is int and isinstance(value, bool):
        value_ok = False
    else:
        value_ok = isinstance(value, expected)
    if not value_ok:
        raise AccountDataInvalid(
            f"{kind}: field '{name}' must be {expected.__name__}, "
            f"got {type(value).__name__}",
            {"kind": kind},
        )
    return value


def _identity_field(data: Dict[str, Any], kind: str, name: str) -> str:
    value = _field(data, kind, name, str)
    if not is_identity(value):
        raise AccountDataInvalid(
            f"{kind}: field '{name}' is not a 64-char hex identity",
            {"kind": kind},
        )
    return value


def _counter_field(data: Dict[str, Any], kind: str, name: str) -> int:
    value = _field(data, kind, name, int)
    if value < 0:
        raise AccountDataInvalid(
            f"{kind}: counter '{name}' is negative ({value})", {"kind": kind}
        )
    return value


# ─────────────────────────────────────────────────────────────
# Accounts
# ─────────────────────────────────────────────────────────────

@dataclass
class ComplianceState:
    """Deployment-wide counters and the administering authority."""

    KIND = "ComplianceState"

    authority:          str
    verification_count: int = 0
    violation_count:    int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authority":          self.authority,
            "verification_count": self.verification_count,
            "violation_count":    self.violation_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplianceState":
        return cls(
            authority=          _identity_field(data, cls.KIND, "authority"),
            verification_count= _counter_field(data, cls.KIND, "verification_count"),
            violation_count=    _counter_field(data, cls.KIND, "violation_count"),
        )


@dataclass
class CompliancePolicy:
    """
    The single policy evaluated by verify_compliance.

    Defaults are the safe initial policy: nothing above risk 0 passes
    and no jurisdiction is allowed, but KYC is not yet required.
    """

    KIND = "CompliancePolicy"

    authority:             str
    max_risk_score:        int   = 0
    require_kyc:           bool  = False
    allowed_jurisdictions: bytes = field(default_factory=empty_bitmap)

    @property
    def allowed_codes(self):
        return codes_from_bitmap(self.allowed_jurisdictions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authority":             self.authority,
            "max_risk_score":        self.max_risk_score,
            "require_kyc":           self.require_kyc,
            "allowed_jurisdictions": self.allowed_jurisdictions.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompliancePolicy":
        raw_bitmap = _field(data, cls.KIND, "allowed_jurisdictions", str)
        try:
            bitmap = bytes.fromhex(raw_bitmap)
        except ValueError:
            raise AccountDataInvalid(
                f"{cls.KIND}: allowed_jurisdictions is not valid hex",
                {"kind": cls.KIND},
            )
        if len(bitmap) != BITMAP_BYTES:
            raise AccountDataInvalid(
                f"{cls.KIND}: allowed_jurisdictions must be {BITMAP_BYTES} bytes, "
                f"got {len(bitmap)}",
                {"kind": cls.KIND},
            )
        max_risk_score = _field(data, cls.KIND, "max_risk_score", int)
        if not 0 <= max_risk_score <= MAX_RISK_SCORE:
            raise AccountDataInvalid(
                f"{cls.KIND}: max_risk_score out of range ({max_risk_score})",
                {"kind": cls.KIND},
            )
        return cls(
            authority=             _identity_field(data, cls.KIND, "authority"),
            max_risk_score=        max_risk_score,
            require_kyc=           _field(data, cls.KIND, "require_kyc", bool),
            allowed_jurisdictions= bitmap,
        )


@dataclass
class KycAttestation:
    """
    A stored KYC claim about one wallet.

    jurisdiction is NOT range-checked on load: records written before the
    [0, 79] limit may carry larger codes, and policy evaluation treats
    those as restricted.
    """

    KIND = "KycAttestation"

    wallet:       str
    is_verified:  bool
    jurisdiction: int
    authority:    str
    timestamp:    int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet":       self.wallet,
            "is_verified":  self.is_verified,
            "jurisdiction": self.jurisdiction,
            "authority":    self.authority,
            "timestamp":    self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KycAttestation":
        jurisdiction = _field(data, cls.KIND, "jurisdiction", int)
        if not 0 <= jurisdiction <= 255:
            raise AccountDataInvalid(
                f"{cls.KIND}: jurisdiction is not a u8 ({jurisdiction})",
                {"kind": cls.KIND},
            )
        return cls(
            wallet=       _identity_field(data, cls.KIND, "wallet"),
            is_verified=  _field(data, cls.KIND, "is_verified", bool),
            jurisdiction= jurisdiction,
            authority=    _identity_field(data, cls.KIND, "authority"),
            timestamp=    _field(data, cls.KIND, "timestamp", int),
        )


ACCOUNT_KINDS = {
    ComplianceState.KIND:  ComplianceState,
    CompliancePolicy.KIND: CompliancePolicy,
    KycAttestation.KIND:   KycAttestation,
}


# ─────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────

class EventType:
    """Event name constants. These are the only event kinds published."""
    VERIFICATION    = "VerificationEvent"
    VIOLATION       = "ViolationEvent"
    KYC_ATTESTATION = "KycAttestationEvent"


@dataclass(frozen=True)
class VerificationEvent:
    user:       str
    action:     str
    verified:   bool
    risk_score: int

    event_type = EventType.VERIFICATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user":       self.user,
            "action":     self.action,
            "verified":   self.verified,
            "risk_score": self.risk_score,
        }


@dataclass(frozen=True)
class ViolationEvent:
    user:   str
    reason: str

    event_type = EventType.VIOLATION

    def to_dict(self) -> Dict[str, Any]:
        return {"user": self.user, "reason": self.reason}


@dataclass(frozen=True)
class KycAttestationEvent:
    wallet:       str
    is_verified:  bool
    jurisdiction: int

    event_type = EventType.KYC_ATTESTATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet":       self.wallet,
            "is_verified":  self.is_verified,
            "jurisdiction": self.jurisdiction,
        }


EVENT_CLASSES = {
    EventType.VERIFICATION:    VerificationEvent,
    EventType.VIOLATION:       ViolationEvent,
    EventType.KYC_ATTESTATION: KycAttestationEvent,
}


def event_from_dict(event_type: str, payload: Dict[str, Any]):
    """Rebuild an event object from its type name and payload dict."""
    try:
        cls = EVENT_CLASSES[event_type]
    except KeyError:
        raise ValueError(f"Unknown event type '{event_type}'")
    return cls(**payload)
