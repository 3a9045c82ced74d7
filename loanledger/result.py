"""Result pattern for operations that collect errors instead of raising.

Row matching accumulates every problem it finds on a row so the operator
can fix the spreadsheet in one pass. A Result carries either the matched
value or the full list of collected errors.
"""
from dataclasses import dataclass, field
from typing import List, Optional, TypeVar, Generic

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.

    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        errors: Exceptions collected on failure, empty on success.
        error_type: Category of the first error (e.g., "MATCH", "VALIDATION").

    Usage:
        result = matcher.match(row)
        if result:
            beneficiary = result.value
        else:
            for err in result.errors:
                print(err.message)
    """
    success: bool
    value: Optional[T] = None
    errors: List[Exception] = field(default_factory=list)
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result.

        Args:
            value: The return value.

        Returns:
            A Result with success=True and the given value.
        """
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, errors, error_type: str = None) -> 'Result[T]':
        """Create a failure result.

        Args:
            errors: A single exception or a list of exceptions.
            error_type: Optional error category for programmatic handling.

        Returns:
            A Result with success=False and the collected errors.
        """
        if isinstance(errors, Exception):
            errors = [errors]
        return cls(success=False, errors=list(errors), error_type=error_type)

    @property
    def error(self) -> Optional[str]:
        """Messages of all collected errors joined into one line."""
        if not self.errors:
            return None
        return "; ".join(getattr(e, 'message', str(e)) for e in self.errors)

    def __bool__(self) -> bool:
        return self.success

    def unwrap(self) -> T:
        """Get the value, raising the first collected error if the operation failed.

        Raises:
            Exception: The first collected error, or ValueError if none was recorded.
        """
        if not self.success:
            if self.errors:
                raise self.errors[0]
            raise ValueError("Result unwrap failed")
        return self.value


# Common error types for consistency
class ErrorType:
    """Standard error type constants."""
    VALIDATION = "VALIDATION"
    MATCH = "MATCH"
