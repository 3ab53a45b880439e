"""
Error handling policies for PopulatingCache.

Listener callbacks run synchronously inside ``put()``. When one of them
raises, the tree has already been written; the policy decides whether the
error reaches the caller of ``put()`` or is recorded while the remaining
listeners are still notified.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List


logger = logging.getLogger(__name__)


class ErrorPolicy(ABC):
    """
    Base class for error handling policies.

    Subclasses implement different strategies for handling errors
    raised by listener callbacks.
    """

    @abstractmethod
    def handle(self, error: Exception, listener: Any, path: Any, value: Any) -> None:
        """
        Handle an error raised by a listener callback.

        Args:
            error: The exception that was raised
            listener: The Listener whose callback failed
            path: Path of the PUT being notified, as given by the caller
            value: Value of the PUT being notified

        Raises:
            The error itself (or another one) to abort notification.
        """
        pass

    @staticmethod
    def _record(error: Exception, listener: Any, path: Any) -> dict:
        return {
            'path': path,
            'listener': listener,
            'error': error,
            'error_type': type(error).__name__,
            'error_message': str(error),
        }


class FailFastPolicy(ErrorPolicy):
    """
    Policy that immediately re-raises any error.

    This is the default behavior: the failing ``put()`` raises the listener's
    error and listeners registered after the failing one are not called.
    """

    def handle(self, error: Exception, listener: Any, path: Any, value: Any) -> None:
        """Re-raise the error immediately."""
        raise error


class ContinueOnErrorsPolicy(ErrorPolicy):
    """
    Policy that logs errors and keeps notifying.

    Errors are collected for later inspection.
    """

    def __init__(self, verbose: bool = True):
        """
        Initialize the policy.

        Args:
            verbose: If True, log a warning for every error
        """
        self.errors: List[dict] = []
        self.verbose = verbose

    def handle(self, error: Exception, listener: Any, path: Any, value: Any) -> None:
        self.errors.append(self._record(error, listener, path))
        if self.verbose:
            logger.warning("Listener %r failed for PUT at %r: %s", listener, path, error)

    def get_statistics(self) -> dict:
        """
        Get statistics about errors encountered.

        Returns:
            Dictionary with error counts and details
        """
        by_type = {}
        for record in self.errors:
            by_type[record['error_type']] = by_type.get(record['error_type'], 0) + 1
        return {
            'total_errors': len(self.errors),
            'by_type': by_type,
            'errors': self.errors,
        }


class CollectErrorsPolicy(ErrorPolicy):
    """
    Policy that collects all errors without logging.

    Similar to ContinueOnErrorsPolicy but silent, for callers that
    inspect ``errors`` themselves.
    """

    def __init__(self):
        self.errors: List[dict] = []

    def handle(self, error: Exception, listener: Any, path: Any, value: Any) -> None:
        """Silently collect the error."""
        self.errors.append(self._record(error, listener, path))


class ThresholdPolicy(ErrorPolicy):
    """
    Policy that tolerates errors up to a threshold, then fails fast.

    Useful when an occasional failing listener is acceptable but
    a steady stream of failures indicates a broken subscriber.
    """

    def __init__(self, max_errors: int = 10, verbose: bool = True):
        """
        Initialize threshold policy.

        Args:
            max_errors: Maximum errors to tolerate before failing
            verbose: If True, log a warning for tolerated errors
        """
        self.max_errors = max_errors
        self.error_count = 0
        self.verbose = verbose
        self.errors: List[Exception] = []

    def handle(self, error: Exception, listener: Any, path: Any, value: Any) -> None:
        """Record the error if under threshold, otherwise raise."""
        self.error_count += 1
        self.errors.append(error)

        if self.error_count > self.max_errors:
            raise RuntimeError(f"Listener error threshold exceeded ({self.max_errors} errors)") from error

        if self.verbose:
            logger.warning("[%d/%d] Listener %r failed for PUT at %r: %s",
                           self.error_count, self.max_errors, listener, path, error)
