"""Parser for the delimiter-based generation response format.

Response layout (plain text)::

    ===NAME===
    Todo App
    ===DESCRIPTION===
    A simple todo list
    ===APP_TYPE===
    FRONTEND_ONLY
    ===FILE:src/App.tsx===
    ...file body...
    ===FILE:src/index.css===
    ...
    ===DEPENDENCIES===
    react: ^18.2.0
    ===SETUP===
    npm install && npm run dev
    ===END===

A file body runs from its marker to the next recognized marker or the end of
the text.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .error_classifier import ErrorCategory
from .exceptions import GenerationError

logger = logging.getLogger(__name__)

END_MARKER = "===END==="
FILE_MARKER = "===FILE:"

DEFAULT_APP_TYPE = "FRONTEND_ONLY"
DEFAULT_CHANGE_TYPE = "NEW_APP"
DEFAULT_SETUP = "Run npm install && npm run dev"

_NAME_RE = re.compile(r"===NAME===\s*([\s\S]*?)\s*===")
_DESCRIPTION_RE = re.compile(r"===DESCRIPTION===\s*([\s\S]*?)\s*===")
_APP_TYPE_RE = re.compile(r"===APP_TYPE===\s*([\s\S]*?)\s*===")
_CHANGE_TYPE_RE = re.compile(r"===CHANGE_TYPE===\s*([\s\S]*?)\s*===")
_CHANGE_SUMMARY_RE = re.compile(r"===CHANGE_SUMMARY===\s*([\s\S]*?)\s*===")
_DEPENDENCIES_RE = re.compile(r"===DEPENDENCIES===\s*([\s\S]*?)\s*===")
_SETUP_RE = re.compile(r"===SETUP===\s*([\s\S]*?)===END===")
_FILE_RE = re.compile(
    r"===FILE:([\s\S]*?)===\s*([\s\S]*?)(?====FILE:|===DEPENDENCIES===|===SETUP===|===END===|\Z)"
)


@dataclass
class GeneratedFile:
    path: str
    content: str
    description: str = ""

    def __post_init__(self):
        if not self.description:
            self.description = f"{posixpath.basename(self.path)} file"

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content, "description": self.description}


@dataclass
class ParsedResponse:
    name: str
    description: str
    app_type: str
    change_type: str
    change_summary: str
    files: List[GeneratedFile]
    dependencies: Dict[str, str] = field(default_factory=dict)
    setup_instructions: str = DEFAULT_SETUP


def _first_line(match: Optional[re.Match], default: str = "") -> str:
    if not match:
        return default
    return match.group(1).strip().split("\n")[0].strip()


def extract_files(response_text: str) -> List[GeneratedFile]:
    """Extract every ``===FILE:path===`` body, in response order."""
    files = []
    for match in _FILE_RE.finditer(response_text):
        path = match.group(1).strip()
        if not path:
            continue
        files.append(GeneratedFile(path=path, content=match.group(2).strip()))
    return files


def parse_dependencies(text: str) -> Dict[str, str]:
    """Parse ``package: version`` lines; malformed lines are skipped."""
    dependencies: Dict[str, str] = {}
    for line in text.strip().split("\n"):
        pkg, sep, version = line.partition(":")
        pkg, version = pkg.strip(), version.strip()
        if sep and pkg and version:
            dependencies[pkg] = version
    return dependencies


def parse_generation_response(response_text: str) -> ParsedResponse:
    """
    Parse a complete (or salvaged) response.

    Raises:
        GenerationError: category EMPTY_RESPONSE when the text is blank,
            PARSING_ERROR when NAME/DESCRIPTION are missing or no files exist
    """
    if not response_text or not response_text.strip():
        raise GenerationError(
            "No response from Claude",
            category=ErrorCategory.EMPTY_RESPONSE,
            code="EMPTY_RESPONSE",
            original_response=response_text,
        )

    name_match = _NAME_RE.search(response_text)
    description_match = _DESCRIPTION_RE.search(response_text)
    if not name_match or not description_match:
        logger.warning("[ResponseParser] Missing NAME/DESCRIPTION delimiters")
        raise GenerationError(
            "Invalid response format - missing required delimiters",
            category=ErrorCategory.PARSING_ERROR,
            code="PARSE_ERROR",
            original_response=response_text,
        )

    files = extract_files(response_text)
    if not files:
        raise GenerationError(
            "No files generated in response",
            category=ErrorCategory.PARSING_ERROR,
            code="NO_FILES",
            original_response=response_text,
        )

    dependencies_match = _DEPENDENCIES_RE.search(response_text)
    setup_match = _SETUP_RE.search(response_text)
    change_summary_match = _CHANGE_SUMMARY_RE.search(response_text)

    return ParsedResponse(
        name=_first_line(name_match),
        description=_first_line(description_match),
        app_type=_first_line(_APP_TYPE_RE.search(response_text), DEFAULT_APP_TYPE),
        change_type=_first_line(_CHANGE_TYPE_RE.search(response_text), DEFAULT_CHANGE_TYPE),
        change_summary=change_summary_match.group(1).strip() if change_summary_match else "",
        files=files,
        dependencies=parse_dependencies(dependencies_match.group(1)) if dependencies_match else {},
        setup_instructions=setup_match.group(1).strip() if setup_match else DEFAULT_SETUP,
    )
