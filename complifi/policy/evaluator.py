"""
Compliance decision procedure.

PROTOCOL INVARIANT: Check order matters.
Order: KYC → Risk → Jurisdiction

KYC runs first because the jurisdiction code comes from the attestation;
a jurisdiction is never evaluated for an identity that has not been verified.
The first failing check raises; later checks are not evaluated.
"""

from typing import Optional

from complifi.core.exceptions import (
    KycNotVerified,
    RestrictedJurisdiction,
    RiskScoreTooHigh,
)
from complifi.core.jurisdiction import is_allowed
from complifi.core.models import CompliancePolicy, KycAttestation


def check_kyc(
    policy:      CompliancePolicy,
    user:        str,
    attestation: Optional[KycAttestation],
) -> None:
    if not policy.require_kyc:
        return
    if attestation is None:
        raise KycNotVerified(
            "No KYC attestation found", {"user": user[:16] + "..."}
        )
    if attestation.wallet != user:
        raise KycNotVerified(
            "KYC attestation belongs to a different wallet",
            {"user": user[:16] + "..."},
        )
    if not attestation.is_verified:
        raise KycNotVerified(
            "KYC attestation is not verified", {"user": user[:16] + "..."}
        )


def check_risk(policy: CompliancePolicy, risk_score: int) -> None:
    if risk_score > policy.max_risk_score:
        raise RiskScoreTooHigh(
            details={"risk_score": risk_score, "max_risk_score": policy.max_risk_score}
        )


def check_jurisdiction(
    policy:      CompliancePolicy,
    attestation: Optional[KycAttestation],
) -> None:
    # Jurisdiction is only known through a verified attestation
    if not policy.require_kyc:
        return
    if not is_allowed(policy.allowed_jurisdictions, attestation.jurisdiction):
        raise RestrictedJurisdiction(
            details={"jurisdiction": attestation.jurisdiction}
        )


def evaluate(
    policy:      CompliancePolicy,
    user:        str,
    risk_score:  int,
    attestation: Optional[KycAttestation] = None,
) -> None:
    """
    Evaluate the three compliance predicates for user.

    Returns None when every check passes. Raises KycNotVerified,
    RiskScoreTooHigh or RestrictedJurisdiction on the first failure.
    Pure: reads its arguments only and never mutates them.
    """
    check_kyc(policy, user, attestation)
    check_risk(policy, risk_score)
    check_jurisdiction(policy, attestation)


def is_compliant(
    policy:      CompliancePolicy,
    user:        str,
    risk_score:  int,
    attestation: Optional[KycAttestation] = None,
) -> bool:
    """Boolean form of evaluate(), for previews that must not raise."""
    try:
        evaluate(policy, user, risk_score, attestation)
    except (KycNotVerified, RiskScoreTooHigh, RestrictedJurisdiction):
        return False
    return True
