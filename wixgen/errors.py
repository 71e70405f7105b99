"""Compile-time error taxonomy.

Every error is fatal to compilation and names the offending identifier.
"""
from __future__ import annotations


class CompileError(ValueError):
    """Base class for all manifest compilation failures."""

    category = "error"

    def __init__(self, message: str, *, identifier: str | None = None):
        super().__init__(message)
        self.identifier = identifier

    @property
    def kind(self) -> str:
        return type(self).__name__


class ReferenceResolutionError(CompileError):
    """An identifier reference does not resolve."""

    category = "reference"


class InvariantError(CompileError):
    """A structural invariant of the manifest is violated."""

    category = "invariant"


class OrderingError(CompileError):
    """Sequencing rules are contradictory or cannot be honoured."""

    category = "ordering"


class DomainError(CompileError):
    """An injected value or literal is outside its allowed domain."""

    category = "domain"


# reference errors

class UnresolvedComponentRefError(ReferenceResolutionError):
    pass


class UnresolvedDirectoryRefError(ReferenceResolutionError):
    pass


class UnresolvedFileKeyError(ReferenceResolutionError):
    pass


class UnresolvedActionRefError(ReferenceResolutionError):
    pass


class DanglingParentReferenceError(ReferenceResolutionError):
    pass


class UnknownGuardVariableError(ReferenceResolutionError):
    pass


# invariant violations

class ManifestSchemaError(InvariantError):
    pass


class DuplicateIdentifierError(InvariantError):
    pass


class DuplicateDirectoryIdError(DuplicateIdentifierError):
    pass


class DirectoryCycleError(InvariantError):
    pass


class MissingKeyPathError(InvariantError):
    pass


class MultipleKeyPathsError(InvariantError):
    pass


class InvalidStabilityKeyError(InvariantError):
    pass


class MissingPermanenceFlagError(InvariantError):
    pass


class MissingReturnPolicyError(InvariantError):
    pass


class OrphanComponentError(InvariantError):
    pass


class UnusedDirectoryError(InvariantError):
    pass


class UpgradeCodeChangedError(InvariantError):
    pass


class StaleStabilityKeyError(InvariantError):
    pass


# ordering errors

class OrderingContradictionError(OrderingError):
    def __init__(self, message: str, *, identifier: str | None = None, cycle: list[str] | None = None):
        super().__init__(message, identifier=identifier)
        self.cycle = list(cycle or [])


class SelfReferentialGuardError(OrderingError):
    pass


class DeferredOutsideScriptError(OrderingError):
    pass


class SequenceOverflowError(OrderingError):
    pass


# domain errors

class UnsupportedPlatformError(DomainError):
    pass


class MalformedVersionError(DomainError):
    pass


class MalformedConditionError(DomainError):
    pass


class UnknownProfileError(DomainError):
    pass


__all__ = [
    "CompileError",
    "DanglingParentReferenceError",
    "DeferredOutsideScriptError",
    "DirectoryCycleError",
    "DomainError",
    "DuplicateDirectoryIdError",
    "DuplicateIdentifierError",
    "InvalidStabilityKeyError",
    "InvariantError",
    "MalformedConditionError",
    "MalformedVersionError",
    "ManifestSchemaError",
    "MissingKeyPathError",
    "MissingPermanenceFlagError",
    "MissingReturnPolicyError",
    "MultipleKeyPathsError",
    "OrderingContradictionError",
    "OrderingError",
    "OrphanComponentError",
    "ReferenceResolutionError",
    "SelfReferentialGuardError",
    "SequenceOverflowError",
    "StaleStabilityKeyError",
    "UnknownGuardVariableError",
    "UnknownProfileError",
    "UnresolvedActionRefError",
    "UnresolvedComponentRefError",
    "UnresolvedDirectoryRefError",
    "UnresolvedFileKeyError",
    "UnsupportedPlatformError",
    "UnusedDirectoryError",
    "UpgradeCodeChangedError",
]
