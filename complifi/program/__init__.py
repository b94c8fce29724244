"""
CompliFi Program - signed instructions and the compliance state machine
"""

from complifi.program.instructions import Instruction, InstructionName, decode_args
from complifi.program.processor import DEFAULT_PROGRAM_ID, ComplianceProgram

__all__ = [
    "ComplianceProgram",
    "DEFAULT_PROGRAM_ID",
    "Instruction",
    "InstructionName",
    "decode_args",
]
