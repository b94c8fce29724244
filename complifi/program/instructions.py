"""
complifi/program/instructions.py

Signed instructions.

An Instruction names one program entry point, carries its arguments as
JSON primitives, and is signed by its signer over

    canonicalize(instruction.to_signing_dict())

The raw signature bytes (hex) double as the instruction id: the account
store accepts each id once, and only the canonical encoding of a
signature verifies, so a captured instruction cannot be replayed under
a respelled signature.

Argument wire types:
    u8        int in [0, 255]              (bool is rejected)
    bool      bool
    identity  64-char lowercase hex public key
    string    str, at most MAX_LABEL_BYTES UTF-8 bytes
    bitmap    lowercase hex string (length checked by the entry point)
"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from complifi.core.canonical import canonicalize
from complifi.core.crypto import Ed25519KeyManager, is_identity
from complifi.core.exceptions import InvalidInstruction
from complifi.core.models import MAX_LABEL_BYTES

_NONCE_HEX_LENGTH = 32


class InstructionName:
    """Entry point name constants."""
    INITIALIZE             = "initialize"
    INITIALIZE_POLICY      = "initialize_policy"
    SET_POLICY             = "set_policy"
    CREATE_KYC_ATTESTATION = "create_kyc_attestation"
    VERIFY_COMPLIANCE      = "verify_compliance"
    RECORD_VIOLATION       = "record_violation"


ARG_SCHEMA: Dict[str, Tuple[Tuple[str, str], ...]] = {
    InstructionName.INITIALIZE:        (),
    InstructionName.INITIALIZE_POLICY: (),
    InstructionName.SET_POLICY: (
        ("max_risk_score",        "u8"),
        ("require_kyc",           "bool"),
        ("allowed_jurisdictions", "bitmap"),
    ),
    InstructionName.CREATE_KYC_ATTESTATION: (
        ("wallet",       "identity"),
        ("is_verified",  "bool"),
        ("jurisdiction", "u8"),
    ),
    InstructionName.VERIFY_COMPLIANCE: (
        ("user",       "identity"),
        ("action",     "string"),
        ("risk_score", "u8"),
    ),
    InstructionName.RECORD_VIOLATION: (
        ("user",   "identity"),
        ("reason", "string"),
    ),
}


def _decode_arg(name: str, wire_type: str, value: Any) -> Any:
    if wire_type == "u8":
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
            raise InvalidInstruction(f"'{name}' must be a u8, got {value!r}")
        return value
    if wire_type == "bool":
        if not isinstance(value, bool):
            raise InvalidInstruction(f"'{name}' must be a bool, got {value!r}")
        return value
    if wire_type == "identity":
        if not is_identity(value):
            raise InvalidInstruction(f"'{name}' must be a 64-char hex identity")
        return value
    if wire_type == "string":
        if not isinstance(value, str):
            raise InvalidInstruction(f"'{name}' must be a string, got {value!r}")
        if len(value.encode("utf-8")) > MAX_LABEL_BYTES:
            raise InvalidInstruction(
                f"'{name}' exceeds {MAX_LABEL_BYTES} bytes"
            )
        return value
    if wire_type == "bitmap":
        if not isinstance(value, str):
            raise InvalidInstruction(f"'{name}' must be a hex string, got {value!r}")
        try:
            return bytes.fromhex(value)
        except ValueError:
            raise InvalidInstruction(f"'{name}' is not valid hex")
    raise InvalidInstruction(f"Unknown wire type '{wire_type}'")


def decode_args(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode and type-check instruction arguments.
    Raises InvalidInstruction on an unknown instruction, missing or
    unexpected argument, or wrong argument type.
    """
    try:
        schema = ARG_SCHEMA[name]
    except KeyError:
        raise InvalidInstruction(f"Unknown instruction '{name}'")
    if not isinstance(args, dict):
        raise InvalidInstruction("Instruction args must be a dict")

    expected = {arg for arg, _ in schema}
    unexpected = set(args) - expected
    if unexpected:
        raise InvalidInstruction(
            f"Unexpected arguments for {name}: {sorted(unexpected)}"
        )

    decoded = {}
    for arg, wire_type in schema:
        if arg not in args:
            raise InvalidInstruction(f"Missing argument '{arg}' for {name}")
        decoded[arg] = _decode_arg(arg, wire_type, args[arg])
    return decoded


@dataclass
class Instruction:
    """A signed request to run one program entry point."""

    program_id: str
    name:       str
    args:       Dict[str, Any]
    signer:     str
    nonce:      str
    signature:  Optional[str] = None

    @classmethod
    def create(
        cls,
        program_id:  str,
        name:        str,
        args:        Dict[str, Any],
        key_manager: Ed25519KeyManager,
    ) -> "Instruction":
        """Build and sign an instruction with key_manager as the signer."""
        instruction = cls(
            program_id= program_id,
            name=       name,
            args=       dict(args),
            signer=     key_manager.public_key_hex,
            nonce=      secrets.token_hex(_NONCE_HEX_LENGTH // 2),
        )
        return instruction.sign(key_manager)

    def to_signing_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "name":       self.name,
            "args":       self.args,
            "signer":     self.signer,
            "nonce":      self.nonce,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instruction":
        return cls(
            program_id= data["program_id"],
            name=       data["name"],
            args=       data.get("args", {}),
            signer=     data["signer"],
            nonce=      data["nonce"],
            signature=  data.get("signature"),
        )

    def sign(self, key_manager: Ed25519KeyManager) -> "Instruction":
        """Sign in place. Returns self for chaining."""
        self.signature = key_manager.sign(canonicalize(self.to_signing_dict()))
        return self

    def verify_signature(self) -> bool:
        """
        True iff the signature is valid for signer over the signing dict.
        Never raises.
        """
        if not self.signature:
            return False
        try:
            data = canonicalize(self.to_signing_dict())
        except Exception:
            return False
        return Ed25519KeyManager.verify_detached(data, self.signature, self.signer)

    @property
    def instruction_id(self) -> Optional[str]:
        """Hex of the raw signature bytes; None if the signature does not decode."""
        raw_sig = Ed25519KeyManager.decode_signature(self.signature)
        if raw_sig is None:
            return None
        return raw_sig.hex()
