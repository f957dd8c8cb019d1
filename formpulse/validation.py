"""Validation engine for the signup form.

Each field owns an ordered chain of rules. A rule is a small JSON Schema
(checked with ``jsonschema.Draft7Validator``) plus the error code and message
reported when the value does not satisfy it. Rules are evaluated in order and
the first failing rule wins, so every field reports at most one error.

The engine has no mutable state and performs no I/O; it is safe to call
repeatedly and from several threads at once.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from jsonschema import Draft7Validator

from formpulse.errors import FieldError
from formpulse.types import FieldErrorCode, FieldName, ValidationErrorSet

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# "$" also matches before a trailing newline, so whitespace is rejected separately.
EMAIL_SCHEMA: Dict[str, Any] = {"allOf": [{"pattern": EMAIL_PATTERN}, {"not": {"pattern": r"\s"}}]}

SchemaFactory = Callable[[Mapping[str, str]], Dict[str, Any]]


@dataclass(frozen=True)
class Rule:
    """A single validation rule for one field.

    Attributes:
        code: Error code reported when the rule fails
        message: Human-readable error reported when the rule fails
        schema: JSON Schema the value must satisfy, or a factory building one
            from the full set of field values (for cross-field rules)
        strip: Check the whitespace-trimmed value instead of the raw one
    """
    code: FieldErrorCode
    message: str
    schema: Union[Dict[str, Any], SchemaFactory]
    strip: bool = False

    def check(self, value: str, values: Mapping[str, str]) -> bool:
        """Return True if ``value`` satisfies this rule."""
        schema = self.schema(values) if callable(self.schema) else self.schema
        subject = value.strip() if self.strip else value
        return Draft7Validator(schema).is_valid(subject)


def _matches_password(values: Mapping[str, str]) -> Dict[str, Any]:
    return {"const": values.get(FieldName.PASSWORD.value, "")}


SIGNUP_RULES: Dict[str, Tuple[Rule, ...]] = {
    FieldName.NAME.value: (
        Rule(FieldErrorCode.REQUIRED, "Name is required.", {"minLength": 1}, strip=True),
        Rule(FieldErrorCode.TOO_SHORT, "Name must be at least 2 characters.", {"minLength": 2}, strip=True),
    ),
    FieldName.EMAIL.value: (
        Rule(FieldErrorCode.REQUIRED, "Email is required.", {"minLength": 1}, strip=True),
        Rule(FieldErrorCode.INVALID_FORMAT, "Please enter a valid email address.", EMAIL_SCHEMA),
    ),
    FieldName.PASSWORD.value: (
        Rule(FieldErrorCode.REQUIRED, "Password is required.", {"minLength": 1}),
        Rule(FieldErrorCode.TOO_SHORT, "Password must be at least 8 characters.", {"minLength": 8}),
    ),
    FieldName.CONFIRM_PASSWORD.value: (
        Rule(FieldErrorCode.REQUIRED, "Please confirm your password.", {"minLength": 1}),
        Rule(FieldErrorCode.MISMATCH, "Passwords do not match.", _matches_password),
    ),
}


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating the signup fields.

    Attributes:
        is_valid: Whether every field passed
        errors: One FieldError per failing field, in field order

    Examples:
        >>> engine = ValidationEngine()
        >>> result = engine.validate({
        ...     "name": "Jane", "email": "jane@example.com",
        ...     "password": "password123", "confirmPassword": "password123",
        ... })
        >>> result.is_valid
        True
        >>> result.to_error_set()
        {}
    """
    is_valid: bool
    errors: List[FieldError]

    @property
    def failed_fields(self) -> List[str]:
        """Names of the failing fields, sorted."""
        return sorted(e.path for e in self.errors)

    def to_error_set(self) -> ValidationErrorSet:
        """Flatten to the field -> message mapping shown to the user."""
        return {e.path: e.message for e in self.errors}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }


class ValidationEngine:
    """Rule-chain validation engine for form fields.

    Attributes:
        rules: Field name -> ordered rules for that field

    Examples:
        >>> engine = ValidationEngine()
        >>> result = engine.validate({"name": "", "email": "", "password": "", "confirmPassword": ""})
        >>> result.failed_fields
        ['confirmPassword', 'email', 'name', 'password']
    """

    def __init__(self, rules: Optional[Dict[str, Tuple[Rule, ...]]] = None) -> None:
        self.rules = rules if rules is not None else SIGNUP_RULES
        for chain in self.rules.values():
            for rule in chain:
                if not callable(rule.schema):
                    Draft7Validator.check_schema(rule.schema)

    def validate(self, values: Mapping[str, Any]) -> ValidationResult:
        """Validate field values, reporting the first failing rule per field.

        Missing or ``None`` values are treated as empty strings.

        Args:
            values: Field name -> raw value

        Returns:
            ValidationResult listing at most one error per field
        """
        normalized = {name: as_text(values.get(name)) for name in self.rules}
        errors: List[FieldError] = []

        for name, chain in self.rules.items():
            value = normalized[name]
            for rule in chain:
                if not rule.check(value, normalized):
                    errors.append(FieldError(path=name, code=rule.code, message=rule.message))
                    break

        return ValidationResult(is_valid=not errors, errors=errors)


def as_text(value: Any) -> str:
    """Field value as a string; None becomes empty."""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


_default_engine = ValidationEngine()


def validate_signup(fields: Mapping[str, Any]) -> ValidationErrorSet:
    """Validate signup fields and return the field -> message error set.

    Examples:
        >>> validate_signup({
        ...     "name": "Jane", "email": "jane@example.com",
        ...     "password": "password123", "confirmPassword": "different",
        ... })
        {'confirmPassword': 'Passwords do not match.'}
    """
    return _default_engine.validate(fields).to_error_set()


def has_errors(errors: ValidationErrorSet) -> bool:
    """True if the error set reports at least one field."""
    return len(errors) > 0


def diff_errors(
    previous: ValidationErrorSet,
    current: ValidationErrorSet,
    field_names: Optional[List[str]] = None,
) -> Tuple[List[str], List[str]]:
    """Compare two error sets.

    Args:
        previous: Error set from the previous validation pass
        current: Error set from the latest validation pass
        field_names: Fields to compare, in order (defaults to the union of keys)

    Returns:
        ``(shown, corrected)``: fields that newly have an error, and fields
        that had an error and no longer do
    """
    if field_names is None:
        field_names = list(dict.fromkeys([*previous, *current]))
    shown = [f for f in field_names if f in current and f not in previous]
    corrected = [f for f in field_names if f in previous and f not in current]
    return shown, corrected


__all__ = [
    "EMAIL_PATTERN",
    "EMAIL_SCHEMA",
    "as_text",
    "Rule",
    "SIGNUP_RULES",
    "ValidationResult",
    "ValidationEngine",
    "validate_signup",
    "has_errors",
    "diff_errors",
]
