"""Static validation of generated source files.

The pipeline treats the validator as a black box: ``validate(content, path)``
returns pass/fail plus defects, and ``auto_fix(content, errors)`` may repair
some of them. ``BasicCodeValidator`` is the built-in default; callers can plug
in a parser-backed validator through the same protocol.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

VALIDATED_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")

UNCLOSED_STRING = "UNCLOSED_STRING"


@dataclass
class ValidationIssue:
    type: str
    message: str
    line: Optional[int] = None
    severity: str = "error"

    def to_dict(self) -> Dict:
        return {"type": self.type, "message": self.message, "line": self.line, "severity": self.severity}


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)


class CodeValidator(Protocol):
    """Protocol for source validators."""

    def validate(self, content: str, path: str) -> ValidationResult:
        ...

    def auto_fix(self, content: str, errors: Sequence[ValidationIssue]) -> str:
        ...


def should_validate(path: str) -> bool:
    return path.endswith(VALIDATED_EXTENSIONS)


_QUOTE_NAMES = {'"': "double", "'": "single"}


def _unclosed_quote(line: str) -> Optional[str]:
    """Return the quote left open at end of line, ignoring // comments."""
    open_quote = None
    i = 0
    while i < len(line):
        char = line[i]
        if char == "\\":
            i += 2
            continue
        if open_quote is None:
            if line.startswith("//", i):
                break
            if char in _QUOTE_NAMES or char == "`":
                open_quote = char
        elif char == open_quote:
            open_quote = None
        i += 1
    # Template literals may legitimately span lines
    return open_quote if open_quote in _QUOTE_NAMES else None


class BasicCodeValidator:
    """Line-based checks for JS/TS sources with a string-closing auto-fix."""

    def validate(self, content: str, path: str) -> ValidationResult:
        errors = []
        for line_number, line in enumerate(content.split("\n"), start=1):
            quote = _unclosed_quote(line)
            if quote:
                errors.append(
                    ValidationIssue(
                        type=UNCLOSED_STRING,
                        message=f"Unclosed {_QUOTE_NAMES[quote]}-quoted string",
                        line=line_number,
                    )
                )
        return ValidationResult(valid=not errors, errors=errors)

    def auto_fix(self, content: str, errors: Sequence[ValidationIssue]) -> str:
        lines = content.split("\n")
        # Bottom-up so line numbers stay valid
        for error in sorted(errors, key=lambda e: e.line or 0, reverse=True):
            if error.type != UNCLOSED_STRING or not error.line:
                continue
            index = error.line - 1
            if not 0 <= index < len(lines):
                continue
            quote = '"' if "double" in error.message else "'"
            line = lines[index].rstrip()
            if line.endswith((";", ",")):
                lines[index] = line[:-1] + quote + line[-1]
            else:
                lines[index] = line + quote
        return "\n".join(lines)


@dataclass
class FileValidationOutcome:
    path: str
    content: str
    errors_found: int = 0
    auto_fixed: int = 0
    remaining: List[ValidationIssue] = field(default_factory=list)


def validate_file(path: str, content: str, validator: CodeValidator) -> FileValidationOutcome:
    """Validate one file, auto-fix and re-validate once if needed."""
    result = validator.validate(content, path)
    if result.valid:
        return FileValidationOutcome(path=path, content=content)

    outcome = FileValidationOutcome(path=path, content=content, errors_found=len(result.errors))
    fixed = validator.auto_fix(content, result.errors)
    if fixed == content:
        outcome.remaining = list(result.errors)
        return outcome

    revalidation = validator.validate(fixed, path)
    outcome.content = fixed
    outcome.remaining = [] if revalidation.valid else list(revalidation.errors)
    outcome.auto_fixed = max(0, len(result.errors) - len(outcome.remaining))
    logger.info(
        "[Validation] %s: %d issue(s), %d auto-fixed", path, outcome.errors_found, outcome.auto_fixed
    )
    return outcome
