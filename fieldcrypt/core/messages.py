"""
Operator-facing status messages.

Migration results are logged and also collected here so the CLI (or any
other caller) can show them to whoever started the migration.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity of an operator message."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
}


@dataclass
class OperatorMessage:
    """A single message, optionally with a suggested follow-up command."""
    severity: Severity
    text: str
    suggestion: Optional[str] = None

    def render(self) -> str:
        line = f"[{self.severity.value.upper()}] {self.text}"
        if self.suggestion:
            line += f"\n    -> {self.suggestion}"
        return line


@dataclass
class OperatorMessages:
    """Collects messages for the invoking operator and mirrors them to the log."""
    messages: List[OperatorMessage] = field(default_factory=list)

    def add(self, severity: Severity, text: str, suggestion: Optional[str] = None) -> OperatorMessage:
        message = OperatorMessage(severity=severity, text=text, suggestion=suggestion)
        self.messages.append(message)
        logger.log(_LOG_LEVELS[severity], text)
        return message

    def info(self, text: str, suggestion: Optional[str] = None) -> OperatorMessage:
        return self.add(Severity.INFO, text, suggestion)

    def warning(self, text: str, suggestion: Optional[str] = None) -> OperatorMessage:
        return self.add(Severity.WARNING, text, suggestion)

    def critical(self, text: str, suggestion: Optional[str] = None) -> OperatorMessage:
        return self.add(Severity.CRITICAL, text, suggestion)

    def by_severity(self, severity: Severity) -> List[OperatorMessage]:
        return [m for m in self.messages if m.severity == severity]

    def clear(self):
        self.messages.clear()

    def render(self) -> str:
        return "\n".join(m.render() for m in self.messages)
