"""Typed errors raised by the commission engine.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to, so handlers never need to inspect message text.
"""
from __future__ import annotations


class CommissionError(Exception):
    code = "commission_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# --- Configuration errors --------------------------------------------------

class ConfigurationError(CommissionError):
    code = "configuration_error"


class TierConfigurationError(ConfigurationError):
    code = "tier_configuration_error"


class NoMatchingTierError(TierConfigurationError):
    code = "no_matching_tier"


class RateTableNotFoundError(ConfigurationError):
    code = "rate_table_not_found"


# --- Data errors -------------------------------------------------------------

class DataError(CommissionError):
    code = "data_error"
    status_code = 422


class FactsUnavailableError(DataError):
    code = "facts_unavailable"


# --- Concurrency errors ------------------------------------------------------

class ConcurrencyError(CommissionError):
    code = "concurrency_error"
    status_code = 409


class ConcurrentRecalculationError(ConcurrencyError):
    code = "concurrent_recalculation"


# --- Invariant violations ----------------------------------------------------

class InvariantViolationError(CommissionError):
    code = "invariant_violation"


class TierOverlapError(TierConfigurationError, InvariantViolationError):
    code = "tier_overlap"


class NegativeCommissionError(InvariantViolationError):
    code = "negative_commission"


# --- Lifecycle and access ----------------------------------------------------

class LifecycleError(CommissionError):
    code = "lifecycle_error"
    status_code = 409


class InvalidTransitionError(LifecycleError):
    code = "invalid_transition"


class StaleRecordError(LifecycleError):
    code = "stale_record"


class AuthorizationError(CommissionError):
    code = "not_authorized"
    status_code = 403


class RecordNotFoundError(CommissionError):
    code = "not_found"
    status_code = 404
