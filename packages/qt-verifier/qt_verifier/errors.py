"""Base exception for the verifier."""


class VerifierError(Exception):
    """Base class for errors raised by verifier components."""
