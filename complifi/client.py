"""
CompliFi client SDK.

Builds, signs and submits instructions for one signing key, and glues a
risk-score oracle to verify_compliance for integrating applications.

    client = ComplianceClient(program, key_manager)
    client.initialize()
    client.initialize_policy()
    client.set_policy(max_risk_score=5, require_kyc=True, allowed_jurisdictions=[1])
    client.attest(wallet, is_verified=True, jurisdiction=1)
    ok = client.check_compliance(wallet, "swap", oracle=my_oracle)
"""

import logging
from typing import Callable, Iterable, Optional, Union

from complifi.core.crypto import Ed25519KeyManager
from complifi.core.exceptions import OracleDataFetchFailed, ProgramError
from complifi.core.jurisdiction import bitmap_from_codes
from complifi.core.models import MAX_LABEL_BYTES, MAX_RISK_SCORE
from complifi.program.instructions import Instruction, InstructionName
from complifi.program.processor import ComplianceProgram

logger = logging.getLogger(__name__)

# A risk oracle maps a wallet identity to a score in [0, 100].
RiskOracle = Callable[[str], int]


def jurisdictions_arg(allowed: Union[bytes, Iterable[int]]) -> str:
    """Accept a raw bitmap or an iterable of codes; return the hex wire form."""
    if isinstance(allowed, (bytes, bytearray)):
        return bytes(allowed).hex()
    return bitmap_from_codes(allowed).hex()


def fetch_risk_score(oracle: RiskOracle, wallet: str) -> int:
    """
    Query oracle for wallet's risk score.
    Raises OracleDataFetchFailed if the oracle raises or returns a value
    that is not an int in [0, 100].
    """
    try:
        score = oracle(wallet)
    except Exception as exc:
        raise OracleDataFetchFailed(
            details={"wallet": wallet[:16] + "...", "cause": str(exc)}
        ) from exc
    if isinstance(score, bool) or not isinstance(score, int) \
            or not 0 <= score <= MAX_RISK_SCORE:
        raise OracleDataFetchFailed(
            f"Oracle returned an invalid risk score: {score!r}",
            {"wallet": wallet[:16] + "..."},
        )
    return score


class ComplianceClient:
    """Signs every instruction it submits with key_manager."""

    def __init__(self, program: ComplianceProgram, key_manager: Ed25519KeyManager):
        self.program = program
        self.key_manager = key_manager

    @property
    def identity(self) -> str:
        return self.key_manager.public_key_hex

    def build(self, name: str, **args) -> Instruction:
        return Instruction.create(
            program_id=  self.program.program_id,
            name=        name,
            args=        args,
            key_manager= self.key_manager,
        )

    def submit(self, name: str, **args) -> Instruction:
        """Build, sign and process one instruction. Returns it on success."""
        instruction = self.build(name, **args)
        self.program.process(instruction)
        return instruction

    # ── Entry points ──────────────────────────────────────────

    def initialize(self) -> Instruction:
        return self.submit(InstructionName.INITIALIZE)

    def initialize_policy(self) -> Instruction:
        return self.submit(InstructionName.INITIALIZE_POLICY)

    def set_policy(
        self,
        max_risk_score:        int,
        require_kyc:           bool,
        allowed_jurisdictions: Union[bytes, Iterable[int]],
    ) -> Instruction:
        return self.submit(
            InstructionName.SET_POLICY,
            max_risk_score=        max_risk_score,
            require_kyc=           require_kyc,
            allowed_jurisdictions= jurisdictions_arg(allowed_jurisdictions),
        )

    def attest(self, wallet: str, is_verified: bool, jurisdiction: int) -> Instruction:
        return self.submit(
            InstructionName.CREATE_KYC_ATTESTATION,
            wallet=       wallet,
            is_verified=  is_verified,
            jurisdiction= jurisdiction,
        )

    def verify(self, user: str, action: str, risk_score: int) -> Instruction:
        return self.submit(
            InstructionName.VERIFY_COMPLIANCE,
            user=       user,
            action=     action,
            risk_score= risk_score,
        )

    def record_violation(self, user: str, reason: str) -> Instruction:
        return self.submit(
            InstructionName.RECORD_VIOLATION,
            user=   user,
            reason= reason,
        )

    # ── Convenience ───────────────────────────────────────────

    def check_compliance(
        self,
        user:              str,
        action:            str,
        oracle:            Optional[RiskOracle] = None,
        risk_score:        Optional[int] = None,
        record_rejections: bool = False,
    ) -> bool:
        """
        Run verify_compliance and report the outcome as a bool.

        The score comes from oracle when given, otherwise from risk_score.
        A program rejection returns False; with record_rejections=True a
        violation carrying the rejection message is recorded first.
        Oracle and substrate failures propagate.
        """
        if oracle is not None:
            risk_score = fetch_risk_score(oracle, user)
        if risk_score is None:
            raise ValueError("check_compliance needs an oracle or a risk_score")

        try:
            self.verify(user, action, risk_score)
        except ProgramError as exc:
            logger.warning(
                "Compliance check failed for %s (%s): %s",
                user[:16], action, exc.name,
            )
            if record_rejections:
                reason = f"{action}: {exc.message}".encode("utf-8")[:MAX_LABEL_BYTES]
                self.record_violation(user, reason.decode("utf-8", "ignore"))
            return False
        return True
