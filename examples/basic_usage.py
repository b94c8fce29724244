"""
CompliFi: Basic Usage Example

Demonstrates:
- Deployment setup (state, policy, attestation)
- Compliance checks against a risk oracle
- Recording violations for rejected checks
- Verifying the signed event log
"""

import tempfile
from pathlib import Path

from complifi import (
    AccountStore,
    ComplianceClient,
    ComplianceProgram,
    Ed25519KeyManager,
    EventLog,
)
from complifi.logging_config import configure_logging

RISK_SCORES = {}


def risk_oracle(wallet: str) -> int:
    """Stand-in for an external risk oracle."""
    return RISK_SCORES.get(wallet, 0)


def main():
    print("=" * 60)
    print("CompliFi: Basic Usage Example")
    print("=" * 60)
    print()

    configure_logging("WARNING")
    workdir = Path(tempfile.mkdtemp(prefix="complifi-demo-"))

    # 1️⃣ Open the store and event log
    print("1️⃣ Opening account store and event log...")
    admin_key = Ed25519KeyManager.generate()
    log = EventLog(workdir / "events.jsonl", admin_key)
    store = AccountStore(path=workdir / "accounts.json", sinks=[log])
    program = ComplianceProgram(store, program_id="demo")
    admin = ComplianceClient(program, admin_key)
    print(f"✅ Working directory: {workdir}")
    print()

    # 2️⃣ Initialize and configure the policy
    print("2️⃣ Initializing deployment...")
    admin.initialize()
    admin.initialize_policy()
    admin.set_policy(max_risk_score=5, require_kyc=True, allowed_jurisdictions=[1, 44])
    policy = program.get_policy()
    print(f"✅ Policy: max_risk={policy.max_risk_score} "
          f"require_kyc={policy.require_kyc} jurisdictions={policy.allowed_codes}")
    print()

    # 3️⃣ Attest two wallets
    print("3️⃣ Attesting wallets...")
    alice = Ed25519KeyManager.generate().public_key_hex
    bob = Ed25519KeyManager.generate().public_key_hex
    admin.attest(alice, is_verified=True, jurisdiction=1)
    admin.attest(bob, is_verified=True, jurisdiction=7)
    RISK_SCORES[alice] = 3
    RISK_SCORES[bob] = 2
    print(f"  alice={alice[:16]}... jurisdiction 1")
    print(f"  bob=  {bob[:16]}... jurisdiction 7")
    print()

    # 4️⃣ Run compliance checks
    print("4️⃣ Running compliance checks...")
    for name, wallet in (("alice", alice), ("bob", bob)):
        ok = admin.check_compliance(wallet, "swap", oracle=risk_oracle, record_rejections=True)
        print(f"  {'✅' if ok else '❌'} {name}: swap {'allowed' if ok else 'rejected'}")
    print()

    state = program.get_state()
    print(f"  verifications={state.verification_count} violations={state.violation_count}")
    print()

    # 5️⃣ Verify the event log
    print("5️⃣ Verifying event log...")
    entries = log.entries()
    for entry in entries:
        print(f"  {entry.sequence:>3}  {entry.event_type}")
    print(f"{'✅' if log.verify_chain() else '❌'} {len(entries)} entries, chain intact: "
          f"{log.verify_chain()}")


if __name__ == "__main__":
    main()
