"""
Compliance program for CompliFi.

Every entry point runs through process(), which:

    1. Checks the instruction targets this program
    2. Verifies the signer's Ed25519 signature          → Unauthorized
    3. Decodes and type-checks arguments                → InvalidInstruction
    4. Runs the handler inside ONE AccountStore transaction

A handler that raises leaves every record untouched and publishes no
event. Rejections are logged and re-raised; the program never records a
violation on its own — callers decide whether to submit record_violation.
"""

import logging
from typing import Callable, Dict, Optional

from complifi.core.exceptions import (
    AccountDataInvalid,
    AttestationVerificationFailed,
    CompliFiError,
    InvalidInstruction,
    InvalidPolicyParameters,
    Unauthorized,
)
from complifi.core.jurisdiction import BITMAP_BYTES, MAX_JURISDICTION
from complifi.core.models import (
    KYC_ATTESTATION_SEED,
    MAX_RISK_SCORE,
    POLICY_SEED,
    STATE_SEED,
    CompliancePolicy,
    ComplianceState,
    KycAttestation,
    KycAttestationEvent,
    VerificationEvent,
    ViolationEvent,
)
from complifi.core.time import unix_timestamp
from complifi.ledger.accounts import AccountStore, Transaction, derive_address
from complifi.policy.evaluator import evaluate, is_compliant
from complifi.program.instructions import Instruction, InstructionName, decode_args

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM_ID = "complifi"


def _attestation_failed(user: str, cause: AccountDataInvalid) -> AttestationVerificationFailed:
    return AttestationVerificationFailed(
        details={"user": user[:16] + "...", "cause": cause.message}
    )


class ComplianceProgram:
    """
    The on-ledger compliance state machine.

    Records (all addresses derived from program_id):
        state        — derive_address(program_id, STATE_SEED)
        policy       — derive_address(program_id, POLICY_SEED)
        attestation  — derive_address(program_id, KYC_ATTESTATION_SEED, wallet)
    """

    def __init__(
        self,
        store:      AccountStore,
        program_id: str = DEFAULT_PROGRAM_ID,
        clock:      Callable[[], int] = unix_timestamp,
    ):
        self.store = store
        self.program_id = program_id
        self.clock = clock

        self.state_address  = derive_address(program_id, STATE_SEED)
        self.policy_address = derive_address(program_id, POLICY_SEED)

        self._handlers: Dict[str, Callable] = {
            InstructionName.INITIALIZE:             self._initialize,
            InstructionName.INITIALIZE_POLICY:      self._initialize_policy,
            InstructionName.SET_POLICY:             self._set_policy,
            InstructionName.CREATE_KYC_ATTESTATION: self._create_kyc_attestation,
            InstructionName.VERIFY_COMPLIANCE:      self._verify_compliance,
            InstructionName.RECORD_VIOLATION:       self._record_violation,
        }

    def attestation_address(self, wallet: str) -> str:
        return derive_address(self.program_id, KYC_ATTESTATION_SEED, wallet)

    # ── Entry point ───────────────────────────────────────────

    def process(self, instruction: Instruction) -> None:
        """
        Execute one signed instruction atomically.

        Raises a ProgramError or LedgerError subclass on rejection; in
        that case no record changed and no event was published.
        """
        try:
            if instruction.program_id != self.program_id:
                raise InvalidInstruction(
                    "Instruction targets a different program",
                    {"program_id": instruction.program_id},
                )
            if not instruction.verify_signature():
                raise Unauthorized(
                    "Missing or invalid signer signature",
                    {"signer": str(instruction.signer)[:16] + "..."},
                )
            args = decode_args(instruction.name, instruction.args)
            handler = self._handlers[instruction.name]

            with self.store.transaction(
                owner=          self.program_id,
                instruction_id= instruction.instruction_id,
            ) as tx:
                handler(tx, instruction.signer, **args)

        except CompliFiError as exc:
            logger.info(
                "Rejected %s: %s (%s)",
                instruction.name, type(exc).__name__, exc.message,
            )
            raise

    # ── Read-only accessors ───────────────────────────────────

    def get_state(self) -> ComplianceState:
        return self.store.read(self.state_address, ComplianceState)

    def get_policy(self) -> CompliancePolicy:
        return self.store.read(self.policy_address, CompliancePolicy)

    def get_attestation(self, wallet: str) -> KycAttestation:
        return self.store.read(self.attestation_address(wallet), KycAttestation)

    def preview(self, user: str, risk_score: int) -> bool:
        """
        Evaluate the current policy for user without submitting anything.
        Does not touch counters and publishes no event.

        Raises AttestationVerificationFailed, as verify_compliance does,
        if the stored attestation does not decode.
        """
        policy = self.get_policy()
        attestation: Optional[KycAttestation] = None
        if policy.require_kyc and self.store.exists(self.attestation_address(user)):
            try:
                attestation = self.get_attestation(user)
            except AccountDataInvalid as exc:
                raise _attestation_failed(user, exc) from exc
        return is_compliant(policy, user, risk_score, attestation)

    # ── Handlers ──────────────────────────────────────────────

    def _initialize(self, tx: Transaction, signer: str) -> None:
        tx.create(self.state_address, ComplianceState(authority=signer))
        logger.info("Compliance state initialized, authority=%s", signer[:16])

    def _initialize_policy(self, tx: Transaction, signer: str) -> None:
        tx.create(self.policy_address, CompliancePolicy(authority=signer))
        logger.info("Compliance policy initialized with default settings")

    def _set_policy(
        self,
        tx:                    Transaction,
        signer:                str,
        max_risk_score:        int,
        require_kyc:           bool,
        allowed_jurisdictions: bytes,
    ) -> None:
        policy = tx.get(self.policy_address, CompliancePolicy)
        if signer != policy.authority:
            raise Unauthorized("Signer is not the policy authority")

        if not 0 <= max_risk_score <= MAX_RISK_SCORE:
            raise InvalidPolicyParameters(
                f"max_risk_score must be in [0, {MAX_RISK_SCORE}]",
                {"max_risk_score": max_risk_score},
            )
        if len(allowed_jurisdictions) != BITMAP_BYTES:
            raise InvalidPolicyParameters(
                f"allowed_jurisdictions must be exactly {BITMAP_BYTES} bytes",
                {"length": len(allowed_jurisdictions)},
            )

        policy.max_risk_score = max_risk_score
        policy.require_kyc = require_kyc
        policy.allowed_jurisdictions = allowed_jurisdictions
        tx.put(self.policy_address, policy)
        logger.info(
            "Policy updated: max_risk_score=%d require_kyc=%s jurisdictions=%s",
            max_risk_score, require_kyc, policy.allowed_codes,
        )

    def _create_kyc_attestation(
        self,
        tx:           Transaction,
        signer:       str,
        wallet:       str,
        is_verified:  bool,
        jurisdiction: int,
    ) -> None:
        state = tx.get(self.state_address, ComplianceState)
        if signer != state.authority:
            raise Unauthorized("Signer is not the state authority")
        if not 0 <= jurisdiction <= MAX_JURISDICTION:
            raise InvalidPolicyParameters(
                f"jurisdiction must be in [0, {MAX_JURISDICTION}]",
                {"jurisdiction": jurisdiction},
            )

        tx.put(
            self.attestation_address(wallet),
            KycAttestation(
                wallet=       wallet,
                is_verified=  is_verified,
                jurisdiction= jurisdiction,
                authority=    signer,
                timestamp=    self.clock(),
            ),
        )
        tx.emit(KycAttestationEvent(
            wallet=       wallet,
            is_verified=  is_verified,
            jurisdiction= jurisdiction,
        ))
        logger.info("KYC attestation created for wallet: %s", wallet)

    def _verify_compliance(
        self,
        tx:         Transaction,
        signer:     str,
        user:       str,
        action:     str,
        risk_score: int,
    ) -> None:
        state = tx.get(self.state_address, ComplianceState)
        if signer not in (state.authority, user):
            raise Unauthorized("Signer is neither the state authority nor the user")
        policy = tx.get(self.policy_address, CompliancePolicy)

        attestation: Optional[KycAttestation] = None
        if policy.require_kyc:
            address = self.attestation_address(user)
            if tx.exists(address):
                try:
                    attestation = tx.get(address, KycAttestation)
                except AccountDataInvalid as exc:
                    raise _attestation_failed(user, exc) from exc

        evaluate(policy, user, risk_score, attestation)

        state.verification_count += 1
        tx.put(self.state_address, state)
        tx.emit(VerificationEvent(
            user=       user,
            action=     action,
            verified=   True,
            risk_score= risk_score,
        ))
        logger.info(
            "Compliance verified for user %s, action %s, risk %d",
            user[:16], action, risk_score,
        )

    def _record_violation(
        self,
        tx:     Transaction,
        signer: str,
        user:   str,
        reason: str,
    ) -> None:
        state = tx.get(self.state_address, ComplianceState)
        if signer != state.authority:
            raise Unauthorized("Signer is not the state authority")

        state.violation_count += 1
        tx.put(self.state_address, state)
        tx.emit(ViolationEvent(user=user, reason=reason))
        logger.info("Violation recorded for user %s: %s", user[:16], reason)
