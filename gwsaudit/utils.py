"""
Utility functions for the Workspace inactivity audit tools.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire step of a run
         "Failed to send notification: {e}"
- WARNING: Partial failures (pagination aborted, per-user action failed)
           "Error fetching license assignments, returning partial results: {e}"
- INFO: Progress messages, counts
        "Found 42 inactive users"
        "Processing batch: groups 1 to 500"
- DEBUG: Per-item detail that doesn't affect overall results
         "Group eng@example.com has no MANAGER"
"""
import csv
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

# Type checking imports (not imported at runtime)
if TYPE_CHECKING:
    from rich.progress import Progress, TaskID

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Count processed items for a per-user scan.

    Shows a rich progress bar when stdout is a terminal and a plain line every
    PLAIN_EVERY items otherwise (cron, pipes). A short summary is printed on exit.

    Usage:
        with ProgressTracker("License report", total=len(users), flagged_label="Unlicensed") as tracker:
            for user in users:
                ...
                tracker.advance(flagged=not assignments)
    """

    PLAIN_EVERY = 100

    def __init__(self, title: str, total: int = 0, show_progress: bool = True,
                 flagged_label: str = "Flagged"):
        self.title = title
        self.total = total
        self.flagged_label = flagged_label
        self.completed = 0
        self.flagged = 0
        self._progress: Optional["Progress"] = None
        self._task: Optional["TaskID"] = None
        self._use_rich = show_progress and sys.stdout.isatty()

    def __enter__(self):
        if self._use_rich:
            from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
            self._progress = Progress(
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
            )
            self._task = self._progress.add_task(self.title, total=self.total or None)
            self._progress.start()
        else:
            print(f"{self.title}: {self.total or '?'} items")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._progress is not None:
            self._progress.stop()
        print(f"{self.title}: processed {self.completed:,}, {self.flagged_label.lower()} {self.flagged:,}")
        return False

    def advance(self, flagged: bool = False):
        self.completed += 1
        if flagged:
            self.flagged += 1
        if self._progress is not None:
            self._progress.update(self._task, advance=1)
        elif self.completed % self.PLAIN_EVERY == 0:
            print(f"  {self.completed}/{self.total or '?'} ({self.flagged} {self.flagged_label.lower()})")


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def to_rfc3339(dt: datetime) -> str:
    """Format an aware datetime the way the Reports API expects (second precision, Z suffix)."""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_recipients(value: Any) -> List[str]:
    """Normalize a comma-separated string or list of email addresses."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [v.strip() for v in value if v and v.strip()]


# =============================================================================
# Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Create a consistent hash of a sensitive identifier.

    The same input always produces the same output, so redacted logs can
    still be correlated with each other.
    """
    if not value:
        return value
    digest = hashlib.sha256(value.lower().encode()).hexdigest()[:12]
    return f"{prefix}{digest}" if prefix else digest


_EMAIL_PATTERN = re.compile(r'\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b')


def redact_log_message(message: str) -> str:
    """
    Redact email addresses from a log message, keeping the domain.

    Example: jane.doe@example.com -> user-1a2b3c4d5e6f@example.com
    """
    if not message:
        return message
    return _EMAIL_PATTERN.sub(
        lambda m: f"user-{hash_sensitive_id(m.group(1))}@{m.group(2)}",
        message
    )


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts email addresses from log messages.

    Uses consistent hashing so the same address produces the same hash,
    allowing correlation between log lines.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"gws_audit_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry raw email addresses
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


# =============================================================================
# Output Writers
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    # Owner read/write only: reports list user accounts
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2, default=str)
    except Exception:
        os.close(fd)
        raise
    print(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write data to CSV file. An empty list still produces a header row when fieldnames are given."""
    if not data and not fieldnames:
        return

    if not fieldnames:
        fieldnames = list(data[0].keys())

    with open(filepath, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {filepath}")


def print_summary_table(title: str, summary: Dict[str, Any]) -> None:
    """Print a key/value summary table."""
    if not summary:
        return

    width = max(len(str(k)) for k in summary) + 2
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")
    for key, value in summary.items():
        print(f"  {str(key):<{width}} {value}")
    print()
