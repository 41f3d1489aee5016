"""Gate subsystem — verification stages and their scheduler."""

from dgk.gates.base import BaseGate, Gate, error_verdict
from dgk.gates.command import CommandGate, SecretScanGate
from dgk.gates.parsers import PARSERS, OutputParseError, get_parser
from dgk.gates.runner import GateGraph, GateRunner, GateSpec
from dgk.gates.severity import SeverityMap

__all__ = [
    "PARSERS",
    "BaseGate",
    "CommandGate",
    "Gate",
    "GateGraph",
    "GateRunner",
    "GateSpec",
    "OutputParseError",
    "SecretScanGate",
    "SeverityMap",
    "error_verdict",
    "get_parser",
]
