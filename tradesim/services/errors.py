"""
Service-level exceptions.
"""

from typing import Optional


class TradeSimError(Exception):
    """Base exception for simulator errors."""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class CompetitionError(TradeSimError):
    """Base exception for competition lifecycle errors."""
    pass


class InvalidCompetitionStateError(CompetitionError):
    """Raised when a competition is missing or in the wrong state for an operation."""
    pass


class ActiveCompetitionError(CompetitionError):
    """Raised when starting a competition while another one is active."""
    pass


class InsufficientBalanceError(TradeSimError):
    """Raised when debiting more than a team holds."""
    pass
