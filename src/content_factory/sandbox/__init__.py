from .harness import ExecutionResult, SandboxHarness, extract_entry_point
from .verifier import TestCase, TestResult, VerificationReport, outputs_match, verify_test_cases

__all__ = [
    "ExecutionResult",
    "SandboxHarness",
    "TestCase",
    "TestResult",
    "VerificationReport",
    "extract_entry_point",
    "outputs_match",
    "verify_test_cases",
]
