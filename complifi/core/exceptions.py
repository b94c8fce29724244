"""
CompliFi Exception Hierarchy

All exceptions inherit from CompliFiError for easy catching.

ProgramError subclasses are the compliance program's own failures and
carry a stable numeric code (6000 + position, in declaration order).
LedgerError subclasses are raised by the account substrate.
"""


class CompliFiError(Exception):
    """Base exception for all CompliFi errors"""

    def __init__(self, message: str = None, details: dict = None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        self.details = details or {}

    default_message = "CompliFi error"

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ── Program errors ────────────────────────────────────────────

class ProgramError(CompliFiError):
    """Raised when a compliance instruction is rejected by the program"""
    code: int = None
    default_message = "Program error"

    @property
    def name(self) -> str:
        return type(self).__name__


class KycNotVerified(ProgramError):
    """KYC is required and the attestation is missing or unverified"""
    code = 6000
    default_message = "KYC verification failed or not found"


class RiskScoreTooHigh(ProgramError):
    """Supplied risk score exceeds the policy ceiling"""
    code = 6001
    default_message = "Wallet risk score is too high"


class RestrictedJurisdiction(ProgramError):
    """Attested jurisdiction is not in the policy allow-list"""
    code = 6002
    default_message = "User is from a restricted jurisdiction"


class Unauthorized(ProgramError):
    """Signer does not match the record's designated authority"""
    code = 6003
    default_message = "Unauthorized access"


class InvalidPolicyParameters(ProgramError):
    """Malformed policy update or attestation jurisdiction code"""
    code = 6004
    default_message = "Invalid policy parameters"


class AttestationVerificationFailed(ProgramError):
    """Stored attestation data could not be verified"""
    code = 6005
    default_message = "Attestation verification failed"


class OracleDataFetchFailed(ProgramError):
    """Risk oracle failed or returned unusable data"""
    code = 6006
    default_message = "Oracle data fetch failed"


PROGRAM_ERRORS = (
    KycNotVerified,
    RiskScoreTooHigh,
    RestrictedJurisdiction,
    Unauthorized,
    InvalidPolicyParameters,
    AttestationVerificationFailed,
    OracleDataFetchFailed,
)


def program_error_from_code(code: int) -> type:
    """Map a numeric program error code back to its exception class."""
    for cls in PROGRAM_ERRORS:
        if cls.code == code:
            return cls
    raise KeyError(f"Unknown program error code: {code}")


# ── Substrate errors ──────────────────────────────────────────

class LedgerError(CompliFiError):
    """Raised when account substrate operations fail"""
    default_message = "Ledger error"


class AccountAlreadyExists(LedgerError):
    """Raised when creating an account at an occupied address"""
    default_message = "Account already exists"


class AccountNotFound(LedgerError):
    """Raised when reading an account that was never created"""
    default_message = "Account not found"


class AccountDataInvalid(LedgerError):
    """Raised when stored account data cannot be decoded"""
    default_message = "Account data is invalid"


class InstructionReplayed(LedgerError):
    """Raised when an already-processed instruction is resubmitted"""
    default_message = "Instruction already processed"


class InvalidInstruction(LedgerError):
    """Raised when instruction arguments fail to decode"""
    default_message = "Instruction arguments are invalid"
