"""
complifi/__init__.py

CompliFi: Compliance Policy Verification Engine

Decides, for a wallet and a requested action, whether the action may
proceed under the deployment's compliance policy (KYC requirement,
risk-score ceiling, jurisdiction allow-list), and keeps tamper-evident
counters and KYC attestation records as the basis for that decision.
"""

__version__ = "0.3.0"

from complifi.client import ComplianceClient, fetch_risk_score
from complifi.core.canonical import canonical_hash, canonicalize
from complifi.core.crypto import Ed25519KeyManager
from complifi.core.exceptions import (
    AccountAlreadyExists,
    AccountNotFound,
    AttestationVerificationFailed,
    CompliFiError,
    InstructionReplayed,
    InvalidInstruction,
    InvalidPolicyParameters,
    KycNotVerified,
    LedgerError,
    OracleDataFetchFailed,
    ProgramError,
    RestrictedJurisdiction,
    RiskScoreTooHigh,
    Unauthorized,
)
from complifi.core.jurisdiction import bitmap_from_codes, codes_from_bitmap
from complifi.core.models import (
    CompliancePolicy,
    ComplianceState,
    EventType,
    KycAttestation,
    KycAttestationEvent,
    VerificationEvent,
    ViolationEvent,
)
from complifi.ledger import AccountStore, EventLog, MemoryEventSink, derive_address
from complifi.program import ComplianceProgram, Instruction, InstructionName

__all__ = [
    # Engine
    "ComplianceProgram",
    "ComplianceClient",
    "Instruction",
    "InstructionName",
    "AccountStore",
    "EventLog",
    "MemoryEventSink",
    "Ed25519KeyManager",
    # Records and events
    "ComplianceState",
    "CompliancePolicy",
    "KycAttestation",
    "EventType",
    "VerificationEvent",
    "ViolationEvent",
    "KycAttestationEvent",
    # Errors
    "CompliFiError",
    "ProgramError",
    "KycNotVerified",
    "RiskScoreTooHigh",
    "RestrictedJurisdiction",
    "Unauthorized",
    "InvalidPolicyParameters",
    "AttestationVerificationFailed",
    "OracleDataFetchFailed",
    "LedgerError",
    "AccountAlreadyExists",
    "AccountNotFound",
    "InstructionReplayed",
    "InvalidInstruction",
    # Helpers
    "derive_address",
    "fetch_risk_score",
    "bitmap_from_codes",
    "codes_from_bitmap",
    "canonicalize",
    "canonical_hash",
]
