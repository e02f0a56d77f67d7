#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""
Catalog Release Notes - Repository Activity Reports from Operator Catalogs

This script reads an operator catalog index and generates release notes for
every source repository referenced by it:
- Repository discovery from catalogs of varying shape (object streams,
  nested package documents and raw text)
- Git activity per repository over a lookback window (latest commit,
  commit list, contributor ranking, line changes)
- Typed error classification with bounded retries for flaky network and
  git operations
- Plain text report with a canonical JSON companion

Architecture:
- Single script with modular internal structure
- Configuration-driven with template + profile overrides
- Sequential processing, one repository clone at a time
- Every failure is attributed to a repository or to the catalog

Report Format Version: 1.0.0
"""

import argparse
import copy
import datetime
import functools
import hashlib
import json
import logging
import os
import re
import shutil
import subprocess
import sys
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

try:
    import yaml  # type: ignore
except ImportError:
    print(
        "ERROR: PyYAML is required. Install with: pip install PyYAML", file=sys.stderr
    )
    sys.exit(1)

try:
    import httpx  # type: ignore
except ImportError:
    print("ERROR: httpx is required. Install with: pip install httpx", file=sys.stderr)
    sys.exit(1)

# =============================================================================
# CONSTANTS AND DEFAULTS
# =============================================================================

SCRIPT_VERSION = "1.0.0"
REPORT_FORMAT_VERSION = "1.0.0"
DEFAULT_CONFIG_DIR = "configuration"
DEFAULT_CATALOG_PATH = "catalog/index.json"
DEFAULT_WORK_DIR = "temp-repos"
DEFAULT_OUTPUT_DIR = "."

DEFAULT_LOOKBACK_DAYS = 7
MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 365
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_CONTRIBUTORS = 5
DEFAULT_MAX_COMMITS = 50
DEFAULT_GIT_TIMEOUT = 300
DEFAULT_STATS_TIMEOUT = 60
DEFAULT_HTTP_TIMEOUT = 30.0

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
REPORT_RULE = "-" * 80
REPORT_FOOTER = "Generated by Catalog Release Notes"

# Branches tried, in order, when no branch is requested
DEFAULT_BRANCH_CANDIDATES = ("main", "master")
RELEASE_BRANCH_PREFIX = "release-"

REPOSITORY_URL_PREFIXES = ("http://", "https://", "git@")
CSV_METADATA_PROPERTY = "olm.csv.metadata"
PACKAGE_PROPERTY_TYPES = ("olm.package", "olm.bundle")
RAW_REPOSITORY_MARKER = '"repository":'
RAW_REPOSITORY_PATTERN = re.compile(r'"repository":\s*"([^"]*)"')

# git log record layout: hash, author name, author date (ISO 8601), raw body
FIELD_SEPARATOR = "\x1f"
RECORD_SEPARATOR = "\x1e"
COMMIT_LOG_FORMAT = "%H%x1f%an%x1f%aI%x1f%B%x1e"
GIT_TIMEOUT_MESSAGE = "Command timed out"

DEFAULT_CONFIG: Dict[str, Any] = {
    "catalog": {
        "path": DEFAULT_CATALOG_PATH,
        "image": "",
    },
    "analysis": {
        "branch": "",
        "lookback_days": DEFAULT_LOOKBACK_DAYS,
        "work_dir": DEFAULT_WORK_DIR,
        "git_timeout": DEFAULT_GIT_TIMEOUT,
        "stats_timeout": DEFAULT_STATS_TIMEOUT,
    },
    "retry": {
        "max_retries": DEFAULT_MAX_RETRIES,
    },
    "report": {
        "max_contributors": DEFAULT_MAX_CONTRIBUTORS,
        "max_commits": DEFAULT_MAX_COMMITS,
        "output_dir": DEFAULT_OUTPUT_DIR,
        "write_json": True,
    },
    "narrative": {
        "enabled": False,
        "timeout": 300,
        "commands": [],
    },
    "http": {
        "timeout": DEFAULT_HTTP_TIMEOUT,
    },
    "logging": {
        "level": "INFO",
        "include_timestamps": True,
    },
}

T = TypeVar("T")


# =============================================================================
# ERROR MODEL AND CLASSIFICATION
# =============================================================================


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every stage of the pipeline."""

    NETWORK = "NETWORK_ERROR"
    VERSION_CONTROL = "VERSION_CONTROL_ERROR"
    PARSING = "PARSING_ERROR"
    FILESYSTEM = "FILESYSTEM_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


# Only transport-level git failures are worth another attempt
RETRYABLE_VERSION_CONTROL_MESSAGES = frozenset(
    {"failed to clone repository", "failed to fetch"}
)

RETRY_DELAYS_SECONDS = {
    ErrorKind.NETWORK: 5.0,
    ErrorKind.TIMEOUT: 10.0,
    ErrorKind.VERSION_CONTROL: 3.0,
}


class AnalyzerError(Exception):
    """
    Structured failure raised by the catalog parser and repository analyzer.

    Carries the error kind, a short message, the wrapped cause, free-form
    diagnostic context (file_path, repository, ...) and the time the failure
    was created.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = datetime.datetime.now(datetime.timezone.utc)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.kind.value}] {self.message}: {self.cause}"
        return f"[{self.kind.value}] {self.message}"

    def with_context(self, key: str, value: Any) -> "AnalyzerError":
        """Attach a diagnostic key/value and return the same error."""
        self.context[key] = value
        return self

    def is_retryable(self) -> bool:
        """Network and timeout failures always retry; git only on transport failures."""
        if self.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            return True
        if self.kind == ErrorKind.VERSION_CONTROL:
            return self.message in RETRYABLE_VERSION_CONTROL_MESSAGES
        return False

    def retry_delay(self) -> float:
        """Suggested back-off in seconds before the next attempt."""
        return RETRY_DELAYS_SECONDS.get(self.kind, 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "cause": str(self.cause) if self.cause is not None else None,
            "context": {key: str(value) for key, value in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.is_retryable(),
        }


def wrap_error(
    err: Optional[BaseException],
    kind: ErrorKind,
    message: str,
    context: Optional[Dict[str, Any]] = None,
) -> AnalyzerError:
    """Wrap a lower-level exception into an AnalyzerError with context."""
    return AnalyzerError(kind, message, err, context)


def classify_exception(exc: BaseException) -> AnalyzerError:
    """
    Map any exception onto the error taxonomy.

    AnalyzerError instances are returned unchanged. Everything else is wrapped
    so that failures can be reported uniformly.
    """
    if isinstance(exc, AnalyzerError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, subprocess.TimeoutExpired)):
        return AnalyzerError(ErrorKind.TIMEOUT, "operation timed out", exc)
    if isinstance(exc, httpx.HTTPError):
        return AnalyzerError(ErrorKind.NETWORK, "network request failed", exc)
    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError, yaml.YAMLError)):
        return AnalyzerError(ErrorKind.PARSING, "failed to parse content", exc)
    if isinstance(exc, OSError):
        return AnalyzerError(ErrorKind.FILESYSTEM, "filesystem operation failed", exc)
    return AnalyzerError(ErrorKind.UNKNOWN, "Unknown error occurred", exc)


# =============================================================================
# RETRY EXECUTION
# =============================================================================


class RetryExecutor:
    """Runs flaky operations with bounded, classification-driven retries."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.logger = logger or logging.getLogger("release_notes")
        self.sleep = sleep

    def run(self, operation: Callable[[], T], label: str) -> T:
        """
        Execute operation, retrying while the failure is retryable.

        Total attempts are max_retries + 1. Only AnalyzerError failures can be
        retried; any other exception counts as an unknown error and surfaces
        after one attempt. The back-off sleep blocks the calling thread. On
        final failure the last exception is re-raised unchanged.
        """
        total_attempts = self.max_retries + 1
        attempt = 0

        while True:
            attempt += 1
            try:
                result = operation()
            except Exception as e:
                if isinstance(e, AnalyzerError):
                    failure = e
                else:
                    failure = AnalyzerError(ErrorKind.UNKNOWN, "Unknown error occurred", e)

                if not failure.is_retryable() or attempt >= total_attempts:
                    self.logger.error(
                        f"Operation '{label}' failed after {attempt} attempts: {e}"
                    )
                    raise

                delay = failure.retry_delay()
                self.logger.warning(
                    f"Operation '{label}' failed (attempt {attempt}/{total_attempts}): "
                    f"{e}. Retrying in {delay:.0f}s..."
                )
                self.sleep(delay)
                continue

            if attempt > 1:
                self.logger.info(
                    f"Operation '{label}' succeeded after {attempt - 1} retries"
                )
            return result


# =============================================================================
# DATA MODEL
# =============================================================================


def clamp_lookback_days(days: int) -> int:
    """Clamp a user-supplied lookback to the supported 1-365 day range."""
    return max(MIN_LOOKBACK_DAYS, min(MAX_LOOKBACK_DAYS, int(days)))


def format_timestamp(moment: datetime.datetime) -> str:
    return moment.strftime(DATE_FORMAT)


@dataclass(frozen=True)
class AnalysisWindow:
    """Half-open interval [since, until) bounding commit traversal."""

    since: datetime.datetime
    until: datetime.datetime

    @classmethod
    def last_days(
        cls, days: float, now: Optional[datetime.datetime] = None
    ) -> "AnalysisWindow":
        """Build the window ending now and starting `days` days earlier."""
        if days <= 0:
            raise AnalyzerError(
                ErrorKind.VALIDATION,
                "lookback window must be positive",
                context={"days": days},
            )
        end = now or datetime.datetime.now(datetime.timezone.utc)
        return cls(since=end - datetime.timedelta(days=days), until=end)

    @property
    def days(self) -> float:
        return (self.until - self.since).total_seconds() / 86400

    def contains(self, moment: datetime.datetime) -> bool:
        return self.since <= moment < self.until

    def describe(self) -> str:
        days = self.days
        unit = "day" if days == 1 else "days"
        return f"Last {days:g} {unit} (since {format_timestamp(self.since)})"


@dataclass(frozen=True)
class CommitRecord:
    """One traversed commit; message holds only the first line."""

    short_hash: str
    message: str
    author: str
    date: datetime.datetime
    lines_added: int = 0
    lines_deleted: int = 0

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_deleted


@dataclass(frozen=True)
class CommitStats:
    """Diff statistics for one commit, or the zero fallback when unknown."""

    lines_added: int = 0
    lines_deleted: int = 0
    files_changed: int = 0
    known: bool = True

    @classmethod
    def unknown(cls) -> "CommitStats":
        return cls(known=False)


@dataclass(frozen=True)
class ContributorRank:
    author: str
    commit_count: int
    rank: int


@dataclass
class ActivitySummary:
    """Activity of a single repository branch over an analysis window."""

    repository: str
    branch: str
    latest_commit: CommitRecord
    window: AnalysisWindow
    commits: List[CommitRecord] = field(default_factory=list)
    contributors: List[ContributorRank] = field(default_factory=list)
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    narrative: Optional[str] = None

    @property
    def total_commits(self) -> int:
        return len(self.commits)

    @property
    def total_lines_changed(self) -> int:
        return self.total_lines_added + self.total_lines_deleted

    @property
    def distinct_author_count(self) -> int:
        return len(self.contributors)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_commits"] = self.total_commits
        data["total_lines_changed"] = self.total_lines_changed
        data["distinct_author_count"] = self.distinct_author_count
        return data


@dataclass
class RepositoryResult:
    """Outcome of processing one repository: a summary or an error."""

    repository: str
    summary: Optional[ActivitySummary] = None
    error: Optional[AnalyzerError] = None

    @property
    def succeeded(self) -> bool:
        return self.summary is not None and self.error is None


def rank_contributors(author_counts: Dict[str, int]) -> list[ContributorRank]:
    """
    Rank authors by commit count, highest first.

    sorted() is stable, so authors with equal counts keep the order in which
    they were first encountered during traversal.
    """
    ordered = sorted(author_counts.items(), key=lambda item: -item[1])
    return [
        ContributorRank(author=author, commit_count=count, rank=index)
        for index, (author, count) in enumerate(ordered, 1)
    ]


def compute_success_rate(succeeded: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return succeeded / total * 100


# =============================================================================
# LOGGING SETUP
# =============================================================================


def setup_logging(
    level: str = "INFO", include_timestamps: bool = True
) -> logging.Logger:
    """Configure logging with structured format."""
    log_format = "[%(levelname)s]"
    if include_timestamps:
        log_format = "[%(asctime)s] " + log_format
    log_format += " %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        datefmt=DATE_FORMAT if include_timestamps else None,
    )

    logger = logging.getLogger("release_notes")
    logger.setLevel(getattr(logging, level.upper()))
    return logger


# =============================================================================
# CONFIGURATION LOADING AND DEEP MERGE
# =============================================================================


def deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, with override taking precedence."""
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_dicts(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def load_yaml_config(config_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML configuration file."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")


def load_configuration(config_dir: Path, profile: Optional[str] = None) -> dict[str, Any]:
    """
    Load configuration with template + profile override merge strategy.

    Args:
        config_dir: Directory containing configuration files
        profile: Optional profile name; <profile>.config overrides the template

    Returns:
        Built-in defaults merged with the template and the profile override
    """
    template_path = config_dir / "template.config"
    if not template_path.exists():
        raise FileNotFoundError(f"Template configuration not found: {template_path}")

    print(f"📝 Loading template config: {template_path}", file=sys.stderr)
    merged_config = deep_merge_dicts(DEFAULT_CONFIG, load_yaml_config(template_path))

    if profile:
        profile_path = config_dir / f"{profile}.config"
        if profile_path.exists():
            print(f"📝 Loading profile config: {profile_path}", file=sys.stderr)
            merged_config = deep_merge_dicts(
                merged_config, load_yaml_config(profile_path)
            )
        else:
            print(
                f"⚠️  No profile config found for '{profile}' - using template defaults only",
                file=sys.stderr,
            )

    merged_config["profile"] = profile or "default"
    return merged_config


def validate_configuration(config: dict[str, Any]) -> list[str]:
    """Return a list of human-readable problems; empty when the config is usable."""
    problems = []

    analysis = config.get("analysis", {})
    lookback = analysis.get("lookback_days")
    if not isinstance(lookback, (int, float)) or isinstance(lookback, bool) or lookback <= 0:
        problems.append(f"analysis.lookback_days must be a positive number, got {lookback!r}")

    max_retries = config.get("retry", {}).get("max_retries")
    if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 0:
        problems.append(f"retry.max_retries must be a non-negative integer, got {max_retries!r}")

    report = config.get("report", {})
    for key in ("max_contributors", "max_commits"):
        value = report.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            problems.append(f"report.{key} must be a non-negative integer, got {value!r}")

    commands = config.get("narrative", {}).get("commands", [])
    if not isinstance(commands, list) or not all(
        isinstance(command, list) and command for command in commands
    ):
        problems.append("narrative.commands must be a list of non-empty argument lists")

    return problems


def compute_config_digest(config: Dict[str, Any]) -> str:
    """Compute SHA256 digest of configuration for reproducibility tracking."""
    config_json = json.dumps(config, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(config_json.encode("utf-8")).hexdigest()


# =============================================================================
# CATALOG INDEX PARSING
# =============================================================================


def is_valid_repository_url(url: Any) -> bool:
    """Single admission gate for repository references."""
    return isinstance(url, str) and url.startswith(REPOSITORY_URL_PREFIXES)


def _as_object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_array(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def repository_from_property(prop: Any) -> Optional[str]:
    """
    Extract the repository URL carried by a catalog property, if any.

    olm.csv.metadata keeps it in value.annotations.repository while the
    olm.package / olm.bundle properties keep it in value.repository.
    """
    prop = _as_object(prop)
    prop_type = _as_string(prop.get("type"))
    value = _as_object(prop.get("value"))

    if prop_type == CSV_METADATA_PROPERTY:
        return _as_string(_as_object(value.get("annotations")).get("repository"))
    if prop_type in PACKAGE_PROPERTY_TYPES:
        return _as_string(value.get("repository"))
    return None


def decode_object_stream(text: str) -> tuple[list[dict[str, Any]], bool]:
    """
    Decode a stream of JSON objects that may each span several lines.

    Lines are buffered until the brace balance returns to zero, then the buffer
    is decoded as one object. Decoding stops at the first failure; objects
    decoded before it are still returned.

    Returns:
        (objects, complete) where complete is False if the stream broke off
    """
    objects: list[dict[str, Any]] = []
    buffer: list[str] = []
    depth = 0

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if not line:
            continue

        buffer.append(line)
        depth += line.count("{") - line.count("}")
        if depth != 0:
            continue

        try:
            decoded = json.loads("\n".join(buffer))
        except json.JSONDecodeError:
            return objects, False
        if not isinstance(decoded, dict):
            return objects, False

        objects.append(decoded)
        buffer = []

    return objects, not buffer


def decode_catalog_document(text: str) -> Optional[dict[str, Any]]:
    """Decode the whole text as a single JSON object, or None."""
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


def extract_from_catalog_document(document: dict[str, Any]) -> list[str]:
    """Walk packages -> channels -> entries -> properties of a nested catalog."""
    found = []
    for package in _as_array(document.get("packages")):
        for channel in _as_array(_as_object(package).get("channels")):
            for entry in _as_array(_as_object(channel).get("entries")):
                entry = _as_object(entry)
                direct = _as_string(entry.get("repository"))
                if direct:
                    found.append(direct)
                for prop in _as_array(entry.get("properties")):
                    repository = repository_from_property(prop)
                    if repository:
                        found.append(repository)
    return found


def extract_from_entry(entry: dict[str, Any]) -> list[str]:
    """Inspect a generic catalog object for direct and property-held repositories."""
    found = []
    direct = _as_string(entry.get("repository"))
    if direct:
        found.append(direct)
    for prop in _as_array(entry.get("properties")):
        repository = repository_from_property(prop)
        if repository:
            found.append(repository)
    return found


def extract_from_raw_text(text: str) -> list[str]:
    """Scan every line for "repository": "<http...>" regardless of structure."""
    found = []
    for line in text.split("\n"):
        if RAW_REPOSITORY_MARKER not in line:
            continue
        for match in RAW_REPOSITORY_PATTERN.finditer(line):
            value = match.group(1)
            if value.startswith("http"):
                found.append(value)
    return found


class CatalogParser:
    """Recovers repository URLs from catalog documents without a schema contract."""

    def __init__(
        self,
        config: dict[str, Any],
        logger: logging.Logger,
        retry: Optional[RetryExecutor] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.retry = retry or RetryExecutor(
            config.get("retry", {}).get("max_retries", DEFAULT_MAX_RETRIES), logger
        )
        self.http_timeout = config.get("http", {}).get("timeout", DEFAULT_HTTP_TIMEOUT)
        self.http_client = http_client

    def extract(self, source: str) -> set[str]:
        """Read the catalog from a path or URL and return its repository set."""
        content = self.load(source)
        return self.parse(content, source)

    def load(self, source: str) -> bytes:
        """Read raw catalog bytes; remote catalogs are downloaded with retries."""
        source = str(source)
        if source.startswith(("http://", "https://")):
            return self.retry.run(
                functools.partial(self._download, source), f"download index {source}"
            )

        path = Path(source)
        context = {"file_path": source}
        if not path.exists():
            raise AnalyzerError(
                ErrorKind.FILESYSTEM, "index file does not exist", context=context
            )
        try:
            return path.read_bytes()
        except OSError as e:
            raise wrap_error(
                e, ErrorKind.FILESYSTEM, "failed to read index file", context
            ) from e

    def _download(self, url: str) -> bytes:
        if self.http_client is not None:
            return self._fetch(self.http_client, url)

        with httpx.Client(
            timeout=httpx.Timeout(self.http_timeout, connect=10.0),
            follow_redirects=True,
            headers={"User-Agent": f"catalog-release-notes/{SCRIPT_VERSION}"},
        ) as client:
            return self._fetch(client, url)

    def _fetch(self, client: httpx.Client, url: str) -> bytes:
        context: Dict[str, Any] = {"url": url}
        try:
            response = client.get(url)
        except httpx.TimeoutException as e:
            raise wrap_error(
                e, ErrorKind.TIMEOUT, "timed out downloading index file", context
            ) from e
        except httpx.HTTPError as e:
            raise wrap_error(
                e, ErrorKind.NETWORK, "failed to download index file", context
            ) from e

        if response.status_code == 200:
            self.logger.debug(f"Downloaded {len(response.content)} bytes from {url}")
            return response.content

        context["status_code"] = response.status_code
        if response.status_code == 429 or response.status_code >= 500:
            raise AnalyzerError(
                ErrorKind.NETWORK, "failed to download index file", context=context
            )
        raise AnalyzerError(
            ErrorKind.VALIDATION, "index file not available", context=context
        )

    def parse(self, content: bytes, source: str = "<memory>") -> set[str]:
        """
        Extract a deduplicated repository set from raw catalog bytes.

        All four strategies run and their results are unioned; a reference
        found by any one of them is kept:
        1. object stream (brace-balanced, possibly multi-line objects)
        2. nested packages/channels/entries document
        3. generic objects (stream objects, plus the document when the
           stream broke off)
        4. raw-text "repository": scan
        """
        context = {"file_path": str(source)}
        if not content:
            raise AnalyzerError(
                ErrorKind.VALIDATION, "index file is empty", context=context
            )

        # Invalid UTF-8 bytes are replaced, never fatal
        text = content.decode("utf-8-sig", errors="replace")

        candidates: list[str] = []

        entries, stream_complete = decode_object_stream(text)
        if not stream_complete:
            self.logger.debug(
                f"Object stream decoding stopped after {len(entries)} objects in {source}"
            )

        document = decode_catalog_document(text)
        if document is not None:
            structured = extract_from_catalog_document(document)
            self.logger.debug(f"Structured catalog walk found {len(structured)} references")
            candidates.extend(structured)
            if not stream_complete:
                entries = entries + [document]

        for entry in entries:
            candidates.extend(extract_from_entry(entry))

        raw = extract_from_raw_text(text)
        self.logger.debug(f"Raw text scan found {len(raw)} references")
        candidates.extend(raw)

        repositories = {url for url in candidates if is_valid_repository_url(url)}
        if not repositories:
            raise AnalyzerError(
                ErrorKind.VALIDATION, "no valid repositories found", context=context
            )

        self.logger.info(f"Found {len(repositories)} unique repositories in {source}")
        return repositories


def render_catalog_from_image(
    image: str, output_path: Path, logger: logging.Logger, timeout: float = 600
) -> Path:
    """
    Produce a catalog document by running `opm render <image> --output=json`.

    Used when the configured catalog file does not exist yet.
    """
    context = {"image": image, "file_path": str(output_path)}
    opm_path = shutil.which("opm")
    if not opm_path:
        raise AnalyzerError(
            ErrorKind.FILESYSTEM, "opm command not found", context=context
        )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Rendering catalog {image} to {output_path}")
    try:
        with open(output_path, "wb") as out:
            result = subprocess.run(
                [opm_path, "render", image, "--output=json"],
                stdout=out,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
    except subprocess.TimeoutExpired as e:
        raise wrap_error(e, ErrorKind.TIMEOUT, "catalog rendering timed out", context) from e
    except OSError as e:
        raise wrap_error(
            e, ErrorKind.FILESYSTEM, "failed to render catalog image", context
        ) from e

    if result.returncode != 0:
        detail = result.stderr.decode("utf-8", errors="replace").strip()[:300]
        raise AnalyzerError(
            ErrorKind.FILESYSTEM,
            "failed to render catalog image",
            context={**context, "detail": detail},
        )

    logger.debug(f"Catalog rendered to {output_path}")
    return output_path


# =============================================================================
# GIT COMMAND EXECUTION
# =============================================================================


def safe_git_command(
    cmd: list[str],
    cwd: Path | None,
    logger: logging.Logger,
    timeout: float = DEFAULT_GIT_TIMEOUT,
) -> tuple[bool, str]:
    """
    Execute a git command safely with error handling.

    Returns:
        (success: bool, output_or_error: str)
    """
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        git_result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env=env,
        )
        return (
            git_result.returncode == 0,
            git_result.stdout.strip() or git_result.stderr.strip(),
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Git command timed out in {cwd}: {' '.join(cmd)}")
        return False, GIT_TIMEOUT_MESSAGE
    except OSError as e:
        logger.error(f"Unable to run git command in {cwd}: {e}")
        return False, str(e)


def extract_repo_name(repo_url: str) -> str:
    """Derive a filesystem-safe directory name from a repository URL."""
    trimmed = repo_url.rstrip("/")
    if trimmed.endswith(".git"):
        trimmed = trimmed[: -len(".git")]
    name = re.split(r"[/:]", trimmed)[-1] if trimmed else ""
    name = re.sub(r"[^A-Za-z0-9._-]", "-", name).strip(".")
    return name or "unknown-repo"


def parse_numstat(output: str) -> CommitStats:
    """Sum `git --numstat` lines; binary entries (marked '-') count as zero."""
    added = deleted = files = 0
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        try:
            added += 0 if parts[0] == "-" else int(parts[0])
            deleted += 0 if parts[1] == "-" else int(parts[1])
        except ValueError:
            # Skip malformed lines
            continue
        files += 1
    return CommitStats(lines_added=added, lines_deleted=deleted, files_changed=files)


def sort_branches(branches: Any) -> list[str]:
    """Order branches: main, master, release-* (newest first), then the rest."""
    names = set(branches)
    primary = [name for name in DEFAULT_BRANCH_CANDIDATES if name in names]
    releases = sorted(
        (name for name in names if name.startswith(RELEASE_BRANCH_PREFIX)),
        reverse=True,
    )
    others = sorted(
        name
        for name in names
        if name not in primary and not name.startswith(RELEASE_BRANCH_PREFIX)
    )
    return primary + releases + others


# =============================================================================
# EXTERNAL NARRATIVE TOOLS
# =============================================================================


class ExternalNarrator:
    """
    Runs optional release-notes tools found on the host.

    Each configured command is an argument list whose items may reference
    {repo_path}, {repository}, {branch} and {since}. Commands whose executable
    is missing are skipped; if none produce output the caller falls back to
    the basic report.
    """

    def __init__(
        self, commands: list[list[str]], timeout: float, logger: logging.Logger
    ) -> None:
        self.commands = commands
        self.timeout = timeout
        self.logger = logger

    @classmethod
    def from_config(
        cls, config: dict[str, Any], logger: logging.Logger
    ) -> Optional["ExternalNarrator"]:
        narrative = config.get("narrative", {})
        if not narrative.get("enabled", False):
            return None
        return cls(narrative.get("commands", []), narrative.get("timeout", 300), logger)

    def is_available(self, command: list[str]) -> bool:
        return bool(command) and shutil.which(command[0]) is not None

    def generate(
        self, repo_path: Path, repo_url: str, branch: str, window: AnalysisWindow
    ) -> Optional[str]:
        values = {
            "repo_path": str(repo_path),
            "repository": repo_url,
            "branch": branch,
            "since": window.since.strftime("%Y-%m-%d"),
        }

        for template in self.commands:
            if not self.is_available(template):
                self.logger.debug(f"{template[0] if template else '<empty>'} not found in PATH")
                continue

            try:
                cmd = [part.format(**values) for part in template]
            except (KeyError, IndexError, ValueError) as e:
                self.logger.warning(
                    f"Skipping {template[0]}: cannot fill placeholders in {template}: {e!r}"
                )
                continue

            self.logger.info(f"Running {cmd[0]} on: {repo_path}")
            try:
                result = subprocess.run(
                    cmd,
                    cwd=repo_path,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.timeout,
                )
            except (subprocess.TimeoutExpired, OSError) as e:
                self.logger.info(f"{cmd[0]} failed for {repo_url}: {e}")
                continue

            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
            self.logger.info(
                f"{cmd[0]} exited with {result.returncode} for {repo_url}, trying next option"
            )

        self.logger.info(f"No narrative generated for {repo_url}, using basic release notes")
        return None


# =============================================================================
# COMMIT HISTORY ANALYSIS
# =============================================================================


class CommitHistoryAnalyzer:
    """Clones a repository and summarizes branch activity over a window."""

    def __init__(
        self,
        config: dict[str, Any],
        logger: logging.Logger,
        narrator: Optional[ExternalNarrator] = None,
    ) -> None:
        analysis = config.get("analysis", {})
        self.config = config
        self.logger = logger
        self.narrator = narrator
        self.work_dir = Path(analysis.get("work_dir", DEFAULT_WORK_DIR))
        self.git_timeout = analysis.get("git_timeout", DEFAULT_GIT_TIMEOUT)
        self.stats_timeout = analysis.get("stats_timeout", DEFAULT_STATS_TIMEOUT)

    def analyze(
        self, repo_url: str, branch: Optional[str], window: AnalysisWindow
    ) -> ActivitySummary:
        """
        Clone repo_url fresh, walk branch history inside window and summarize it.

        The working copy lives under <work_dir>/analysis/<repo-name> and is
        removed on every exit path.
        """
        repo_path = self.work_dir / "analysis" / extract_repo_name(repo_url)
        self._remove_working_copy(repo_path)
        try:
            self._clone(repo_url, repo_path, branch)
            branch_name, tip = self._resolve_branch(repo_path, branch)
            summary = self._summarize(repo_url, repo_path, branch_name, tip, window)
            if self.narrator is not None:
                summary.narrative = self.narrator.generate(
                    repo_path, repo_url, branch_name, window
                )
            return summary
        finally:
            self._remove_working_copy(repo_path)

    def list_branches(self, repo_url: str) -> list[str]:
        """List remote branch names, ordered main/master, release-*, others."""
        success, output = safe_git_command(
            ["git", "ls-remote", "--heads", repo_url], None, self.logger, self.git_timeout
        )
        if not success:
            raise self._git_failure("failed to fetch", output, {"repository": repo_url})

        branches = set()
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) != 2 or not parts[1].startswith("refs/heads/"):
                continue
            name = parts[1].strip()[len("refs/heads/"):]
            if name and name != "HEAD":
                branches.add(name)
        return sort_branches(branches)

    def compute_commit_stats(self, repo_path: Path, commit_hash: str) -> CommitStats:
        """
        Diff statistics for one commit, isolated from the traversal.

        Any failure (oversized diff, timeout, unexpected output) yields
        CommitStats.unknown() so the commit is still recorded.
        """
        try:
            success, output = safe_git_command(
                [
                    "git",
                    "show",
                    "-m",
                    "--first-parent",
                    "--numstat",
                    "--format=",
                    commit_hash,
                ],
                repo_path,
                self.logger,
                self.stats_timeout,
            )
            if not success:
                self.logger.debug(
                    f"Failed to get stats for commit {commit_hash[:8]}: {output[:200]}"
                )
                return CommitStats.unknown()
            return parse_numstat(output)
        except Exception as e:
            self.logger.warning(
                f"Failed to calculate stats for commit {commit_hash[:8]}: {e}"
            )
            return CommitStats.unknown()

    def _clone(self, repo_url: str, repo_path: Path, branch: Optional[str]) -> None:
        repo_path.parent.mkdir(parents=True, exist_ok=True)
        context = {"repository": repo_url, "repo_path": str(repo_path)}
        self.logger.info(f"Cloning repository: {repo_url}")

        if branch:
            success, output = safe_git_command(
                [
                    "git",
                    "clone",
                    "--quiet",
                    "--no-checkout",
                    "--single-branch",
                    "--branch",
                    branch,
                    repo_url,
                    str(repo_path),
                ],
                None,
                self.logger,
                self.git_timeout,
            )
            if success:
                return
            if output == GIT_TIMEOUT_MESSAGE:
                raise self._git_failure("failed to clone repository", output, context)
            # Fall back to a full clone and resolve the remote-tracking ref
            self.logger.debug(f"Single-branch clone of {branch} failed: {output[:200]}")
            self._remove_working_copy(repo_path)

        success, output = safe_git_command(
            ["git", "clone", "--quiet", "--no-checkout", repo_url, str(repo_path)],
            None,
            self.logger,
            self.git_timeout,
        )
        if not success:
            raise self._git_failure("failed to clone repository", output, context)

    def _resolve_ref(self, repo_path: Path, ref: str) -> Optional[str]:
        success, output = safe_git_command(
            ["git", "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"],
            repo_path,
            self.logger,
            self.git_timeout,
        )
        if success and output:
            return output.splitlines()[0].strip()
        return None

    def _resolve_branch(
        self, repo_path: Path, branch: Optional[str]
    ) -> tuple[str, str]:
        """Return (branch name, tip hash), trying local heads before remote refs."""
        candidates = [branch] if branch else list(DEFAULT_BRANCH_CANDIDATES)
        for name in candidates:
            for ref in (f"refs/heads/{name}", f"refs/remotes/origin/{name}"):
                tip = self._resolve_ref(repo_path, ref)
                if tip:
                    self.logger.debug(f"Resolved {ref} to {tip[:8]}")
                    return name, tip

        context = {"repo_path": str(repo_path)}
        if branch:
            raise AnalyzerError(
                ErrorKind.VERSION_CONTROL,
                "branch not found",
                context={**context, "branch": branch},
            )
        raise AnalyzerError(
            ErrorKind.VERSION_CONTROL,
            "failed to get main/master branch reference",
            context=context,
        )

    def _parse_git_log_output(self, git_output: str, repo_name: str) -> list[dict[str, Any]]:
        """
        Parse git log output into structured commit data.

        Expected format from git log --format=%H%x1f%an%x1f%aI%x1f%B%x1e
        """
        commits = []
        for chunk in git_output.split(RECORD_SEPARATOR):
            chunk = chunk.strip("\r\n")
            if not chunk.strip():
                continue

            parts = chunk.split(FIELD_SEPARATOR, 3)
            if len(parts) < 4:
                self.logger.warning(f"Skipping malformed log record in {repo_name}")
                continue

            commit_hash, author, date_text, body = parts
            try:
                commit_date = datetime.datetime.fromisoformat(date_text.strip())
            except ValueError:
                self.logger.warning(f"Invalid date format in {repo_name}: {date_text}")
                continue

            message = body.strip().split("\n", 1)[0].strip()
            commits.append(
                {
                    "hash": commit_hash.strip(),
                    "author": author,
                    "date": commit_date,
                    "message": message,
                }
            )
        return commits

    def _read_log(self, repo_path: Path, args: list[str], repo_url: str) -> list[dict[str, Any]]:
        success, output = safe_git_command(
            ["git", "log", f"--format={COMMIT_LOG_FORMAT}", *args],
            repo_path,
            self.logger,
            self.git_timeout,
        )
        if not success:
            raise self._git_failure(
                "failed to get commit log", output, {"repository": repo_url}
            )
        return self._parse_git_log_output(output, repo_url)

    def _to_record(self, repo_path: Path, raw: dict[str, Any]) -> CommitRecord:
        stats = self.compute_commit_stats(repo_path, raw["hash"])
        return CommitRecord(
            short_hash=raw["hash"][:8],
            message=raw["message"],
            author=raw["author"],
            date=raw["date"],
            lines_added=stats.lines_added,
            lines_deleted=stats.lines_deleted,
        )

    def _summarize(
        self,
        repo_url: str,
        repo_path: Path,
        branch: str,
        tip: str,
        window: AnalysisWindow,
    ) -> ActivitySummary:
        latest = self._read_log(repo_path, ["-1", tip], repo_url)
        if not latest:
            raise AnalyzerError(
                ErrorKind.VERSION_CONTROL,
                "failed to get commit object",
                context={"repository": repo_url, "commit": tip},
            )
        latest_commit = self._to_record(repo_path, latest[0])

        since = window.since.astimezone(datetime.timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S +0000"
        )
        self.logger.info(
            f"Analyzing commits on {branch} since {format_timestamp(window.since)}"
        )
        raw_commits = self._read_log(repo_path, [f"--since={since}", tip], repo_url)

        commits: list[CommitRecord] = []
        author_counts: dict[str, int] = {}
        total_added = total_deleted = 0

        for raw in raw_commits:
            if raw["hash"] == latest[0]["hash"]:
                record = latest_commit
            else:
                record = self._to_record(repo_path, raw)
            commits.append(record)
            author_counts[record.author] = author_counts.get(record.author, 0) + 1
            total_added += record.lines_added
            total_deleted += record.lines_deleted

        self.logger.debug(
            f"Collected {len(commits)} commits from {len(author_counts)} authors for {repo_url}"
        )

        return ActivitySummary(
            repository=repo_url,
            branch=branch,
            latest_commit=latest_commit,
            window=window,
            commits=commits,
            contributors=rank_contributors(author_counts),
            total_lines_added=total_added,
            total_lines_deleted=total_deleted,
        )

    def _git_failure(
        self, message: str, output: str, context: Dict[str, Any]
    ) -> AnalyzerError:
        if output == GIT_TIMEOUT_MESSAGE:
            return AnalyzerError(
                ErrorKind.TIMEOUT, "git operation timed out", context=context
            )
        return AnalyzerError(
            ErrorKind.VERSION_CONTROL,
            message,
            context={**context, "detail": output[:300]},
        )

    def _remove_working_copy(self, repo_path: Path) -> None:
        if not repo_path.exists():
            return
        try:
            shutil.rmtree(repo_path)
        except OSError as e:
            self.logger.warning(f"Failed to clean up repository directory {repo_path}: {e}")


# =============================================================================
# OUTPUT RENDERING
# =============================================================================


class ReportRenderer:
    """Renders activity summaries and failures into the text report."""

    def __init__(self, config: dict[str, Any], logger: logging.Logger) -> None:
        report = config.get("report", {})
        self.config = config
        self.logger = logger
        self.max_contributors = report.get("max_contributors", DEFAULT_MAX_CONTRIBUTORS)
        self.max_commits = report.get("max_commits", DEFAULT_MAX_COMMITS)
        self.footer = report.get("footer", REPORT_FOOTER)

    def render_summary(self, summary: ActivitySummary) -> str:
        """Render one repository's release notes section."""
        latest = summary.latest_commit
        lines = [
            f"Repository: {summary.repository}",
            f"Branch: {summary.branch}",
            REPORT_RULE,
            f"Analysis Period: {summary.window.describe()}",
            f"Analysis Start: {format_timestamp(summary.window.since)}",
            f"Analysis End: {format_timestamp(summary.window.until)}",
            "",
            "=== LATEST COMMIT INFORMATION ===",
            f"Hash: {latest.short_hash}",
            f"Message: {latest.message}",
            f"Author: {latest.author}",
            f"Date: {format_timestamp(latest.date)}",
            "",
            "=== ACTIVITY SUMMARY ===",
            f"Total Commits: {summary.total_commits}",
            f"Total Lines Changed: {summary.total_lines_changed}",
            f"Lines Added: {summary.total_lines_added}",
            f"Lines Deleted: {summary.total_lines_deleted}",
            f"Active Contributors: {summary.distinct_author_count}",
            "",
        ]

        lines.extend(self._render_contributors(summary.contributors))
        lines.extend(self._render_commits(summary.commits))

        if summary.narrative:
            lines.extend(["", "=== RELEASE NOTES NARRATIVE ===", summary.narrative.strip()])

        if self.footer:
            lines.extend(["", self.footer])

        return "\n".join(lines) + "\n\n"

    def _render_contributors(self, contributors: list[ContributorRank]) -> list[str]:
        shown = contributors[: self.max_contributors]
        if not shown:
            return []
        lines = ["=== TOP CONTRIBUTORS ==="]
        for contributor in shown:
            unit = "commit" if contributor.commit_count == 1 else "commits"
            lines.append(
                f"{contributor.rank}. {contributor.author} ({contributor.commit_count} {unit})"
            )
        lines.append("")
        return lines

    def _render_commits(self, commits: list[CommitRecord]) -> list[str]:
        if not commits:
            return ["=== NO COMMITS IN THIS PERIOD ===", "No commits in this period."]

        lines = ["=== COMMITS IN THIS PERIOD ==="]
        shown = commits
        if len(commits) > self.max_commits:
            lines.append(f"(Showing first {self.max_commits} of {len(commits)} commits)")
            shown = commits[: self.max_commits]

        for commit in shown:
            lines.append(
                f"- {commit.message.strip()} ({commit.short_hash}) by {commit.author} "
                f"on {format_timestamp(commit.date)}"
            )
        return lines

    def render_failure(self, repo_url: str, error: BaseException) -> str:
        """Render the error section for a repository that could not be processed."""
        failure = classify_exception(error)
        lines = [
            f"Repository: {repo_url}",
            REPORT_RULE,
            "=== ERROR PROCESSING REPOSITORY ===",
            f"Error Kind: {failure.kind.value}",
            f"Error: {failure}",
        ]
        if failure.context:
            details = ", ".join(
                f"{key}={value}" for key, value in sorted(failure.context.items())
            )
            lines.append(f"Context: {details}")
        lines.extend(
            [
                f"Timestamp: {format_timestamp(failure.timestamp)}",
                "This repository could not be processed successfully.",
                "Please check the repository URL and network connectivity.",
            ]
        )
        return "\n".join(lines) + "\n\n"

    def render_run_summary(
        self, total: int, succeeded: int, failed: int, generated_at: datetime.datetime
    ) -> str:
        return "\n".join(
            [
                "=== PROCESSING SUMMARY ===",
                f"Total Repositories: {total}",
                f"Successfully Processed: {succeeded}",
                f"Failed: {failed}",
                f"Success Rate: {compute_success_rate(succeeded, total):.1f}%",
                f"Generated on: {format_timestamp(generated_at)}",
            ]
        ) + "\n"

    def render_run(
        self,
        results: list[RepositoryResult],
        generated_at: Optional[datetime.datetime] = None,
    ) -> str:
        """Render the whole run: header, one section per repository, summary."""
        generated_at = generated_at or datetime.datetime.now(datetime.timezone.utc)
        header = f"Release Notes Generated on: {format_timestamp(generated_at)}"

        sections = [
            header + "\n" + "=" * len(header) + "\n"
            f"Report Format Version: {REPORT_FORMAT_VERSION}\n\n"
        ]
        for result in results:
            if result.error is not None:
                sections.append(self.render_failure(result.repository, result.error))
            elif result.summary is not None:
                sections.append(self.render_summary(result.summary))

        succeeded = sum(1 for result in results if result.succeeded)
        sections.append(
            self.render_run_summary(
                len(results), succeeded, len(results) - succeeded, generated_at
            )
        )
        return "".join(sections)

    def build_run_data(
        self,
        results: list[RepositoryResult],
        generated_at: Optional[datetime.datetime] = None,
    ) -> dict[str, Any]:
        """Canonical JSON structure of a run."""
        generated_at = generated_at or datetime.datetime.now(datetime.timezone.utc)
        succeeded = [result for result in results if result.succeeded]
        failed = [result for result in results if not result.succeeded]
        return {
            "schema_version": REPORT_FORMAT_VERSION,
            "script_version": SCRIPT_VERSION,
            "generated_at": generated_at.isoformat(),
            "config_digest": compute_config_digest(self.config),
            "repositories": [result.summary.to_dict() for result in succeeded if result.summary],
            "errors": [
                {"repository": result.repository, **result.error.to_dict()}
                for result in failed
                if result.error
            ],
            "summary": {
                "total_repositories": len(results),
                "succeeded": len(succeeded),
                "failed": len(failed),
                "success_rate": round(compute_success_rate(len(succeeded), len(results)), 1),
            },
        }

    def render_json_report(self, data: dict[str, Any], output_path: Path) -> None:
        """Write the canonical JSON report."""
        self.logger.info(f"Writing JSON report to {output_path}")

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)


# =============================================================================
# MAIN ORCHESTRATION AND CLI ENTRY POINT
# =============================================================================


class ReleaseNotesPipeline:
    """Main orchestrator: catalog -> repository set -> per-repository reports."""

    def __init__(
        self,
        config: dict[str, Any],
        logger: logging.Logger,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.logger = logger
        self.retry = RetryExecutor(
            config.get("retry", {}).get("max_retries", DEFAULT_MAX_RETRIES),
            logger,
            sleep,
        )
        self.parser = CatalogParser(config, logger, self.retry)
        self.narrator = ExternalNarrator.from_config(config, logger)
        self.analyzer = CommitHistoryAnalyzer(config, logger, self.narrator)
        self.renderer = ReportRenderer(config, logger)

    def extract_repositories(self, catalog_path: str) -> set[str]:
        return self.parser.extract(catalog_path)

    def analyze_repository(
        self,
        url: str,
        branch: Optional[str] = None,
        window_days: Optional[float] = None,
    ) -> ActivitySummary:
        """Analyze one repository once, without retries."""
        analysis = self.config.get("analysis", {})
        days = window_days if window_days is not None else analysis.get(
            "lookback_days", DEFAULT_LOOKBACK_DAYS
        )
        window = AnalysisWindow.last_days(days)
        return self.analyzer.analyze(url, branch or analysis.get("branch") or None, window)

    def list_branches(self, url: str) -> list[str]:
        return self.retry.run(
            functools.partial(self.analyzer.list_branches, url), f"list branches {url}"
        )

    def analyze_all(
        self,
        urls: list[str],
        branch: Optional[str] = None,
        window_days: Optional[float] = None,
    ) -> list[RepositoryResult]:
        """Analyze repositories sequentially; one failure never stops the run."""
        results = []
        for index, url in enumerate(urls, 1):
            self.logger.info(f"Processing repository {index}/{len(urls)}: {url}")
            try:
                summary = self.retry.run(
                    functools.partial(self.analyze_repository, url, branch, window_days),
                    f"process repository {url}",
                )
            except Exception as e:
                error = classify_exception(e).with_context("repository", url)
                self.logger.error(f"Failed to generate release notes for {url}: {error}")
                results.append(RepositoryResult(repository=url, error=error))
            else:
                results.append(RepositoryResult(repository=url, summary=summary))

        succeeded = sum(1 for result in results if result.succeeded)
        self.logger.info(
            f"Analysis complete: {succeeded} succeeded, {len(results) - succeeded} failed"
        )
        return results

    def process_all(
        self,
        urls: list[str],
        branch: Optional[str] = None,
        window_days: Optional[float] = None,
    ) -> str:
        """Analyze every repository and return the full text report."""
        return self.renderer.render_run(self.analyze_all(urls, branch, window_days))


def _default_pipeline(
    config: Optional[dict[str, Any]] = None, logger: Optional[logging.Logger] = None
) -> ReleaseNotesPipeline:
    merged = deep_merge_dicts(DEFAULT_CONFIG, config or {})
    return ReleaseNotesPipeline(merged, logger or logging.getLogger("release_notes"))


def extract_repositories(
    catalog_path: str,
    config: Optional[dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> set[str]:
    """Return the deduplicated repository set referenced by a catalog."""
    return _default_pipeline(config, logger).extract_repositories(catalog_path)


def analyze_repository(
    url: str,
    branch: Optional[str] = None,
    window_days: float = DEFAULT_LOOKBACK_DAYS,
    config: Optional[dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> ActivitySummary:
    """Summarize one repository's branch activity over the last window_days."""
    return _default_pipeline(config, logger).analyze_repository(url, branch, window_days)


def process_all(
    urls: list[str],
    config: Optional[dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Analyze repositories in order and return the aggregate text report."""
    return _default_pipeline(config, logger).process_all(urls)


def list_branches(
    url: str,
    config: Optional[dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> list[str]:
    """Remote branches of url, main/master first, then release-*, then others."""
    return _default_pipeline(config, logger).list_branches(url)


def write_summary_to_step_summary(run_data: dict[str, Any]) -> None:
    """Append the run summary to the GitHub Step Summary when available."""
    step_summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not step_summary_file:
        return

    summary = run_data.get("summary", {})
    try:
        with open(step_summary_file, "a", encoding="utf-8") as f:
            f.write("\n## 📊 Release Notes Summary\n\n")
            f.write(f"- **Total Repositories:** {summary.get('total_repositories', 0)}\n")
            f.write(f"- **Successfully Processed:** {summary.get('succeeded', 0)}\n")
            f.write(f"- **Failed:** {summary.get('failed', 0)}\n")
            f.write(f"- **Success Rate:** {summary.get('success_rate', 0.0):.1f}%\n")
            for error in run_data.get("errors", []):
                f.write(f"  - ❌ `{error['repository']}`: {error['kind']} {error['message']}\n")
    except OSError as e:
        logging.debug(f"Could not write run summary to GITHUB_STEP_SUMMARY: {e}")


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate release notes for repositories referenced by an operator catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --catalog catalog/index.json
  %(prog)s --catalog https://example.com/index.json --days 30 --branch main
  %(prog)s --catalog-image quay.io/prega/prega-operator-index:v4.21
  %(prog)s --list-branches https://github.com/org/operator
        """,
    )

    parser.add_argument("--catalog", help="Path or URL of the catalog index document")
    parser.add_argument(
        "--catalog-image",
        help="Catalog image rendered with 'opm render' when the catalog file is missing",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help=f"Configuration directory (default: {DEFAULT_CONFIG_DIR})",
    )
    parser.add_argument("--profile", help="Configuration profile override to apply")
    parser.add_argument("--branch", help="Branch to analyze (default: main, then master)")
    parser.add_argument(
        "--days", type=int, help="Lookback window in days (clamped to 1-365)"
    )
    parser.add_argument("--output", type=Path, help="Output file for the text report")
    parser.add_argument("--work-dir", type=Path, help="Directory for temporary clones")
    parser.add_argument("--max-retries", type=int, help="Retries for retryable failures")
    parser.add_argument(
        "--narrative",
        action="store_true",
        help="Run configured external release-notes tools when available",
    )
    parser.add_argument("--no-json", action="store_true", help="Skip JSON report")
    parser.add_argument(
        "--list-branches", metavar="URL", help="List branches of a repository and exit"
    )
    parser.add_argument(
        "--validate-only", action="store_true", help="Validate configuration and exit"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level from configuration",
    )

    return parser.parse_args(argv)


def apply_argument_overrides(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    """Fold command line flags into the merged configuration."""
    config = copy.deepcopy(config)
    if args.catalog:
        config["catalog"]["path"] = args.catalog
    if args.catalog_image:
        config["catalog"]["image"] = args.catalog_image
    if args.branch:
        config["analysis"]["branch"] = args.branch
    if args.days is not None:
        config["analysis"]["lookback_days"] = clamp_lookback_days(args.days)
    if args.work_dir:
        config["analysis"]["work_dir"] = str(args.work_dir)
    if args.max_retries is not None:
        config["retry"]["max_retries"] = args.max_retries
    if args.narrative:
        config["narrative"]["enabled"] = True
    if args.no_json:
        config["report"]["write_json"] = False
    if args.log_level:
        config["logging"]["level"] = args.log_level
    elif args.verbose:
        config["logging"]["level"] = "DEBUG"
    return config


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    try:
        args = parse_arguments(argv)

        try:
            config = load_configuration(args.config_dir, args.profile)
        except Exception as e:
            print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
            return 1

        config = apply_argument_overrides(config, args)

        log_config = config.get("logging", {})
        logger = setup_logging(
            level=log_config.get("level", "INFO"),
            include_timestamps=log_config.get("include_timestamps", True),
        )

        logger.info(f"Catalog Release Notes v{SCRIPT_VERSION}")
        logger.info(f"Configuration digest: {compute_config_digest(config)[:12]}...")

        problems = validate_configuration(config)
        if problems:
            for problem in problems:
                logger.error(f"Invalid configuration: {problem}")
            return 1
        if args.validate_only:
            print(f"✅ Configuration valid for profile '{config['profile']}'")
            return 0

        pipeline = ReleaseNotesPipeline(config, logger)

        if args.list_branches:
            try:
                branches = pipeline.list_branches(args.list_branches)
            except AnalyzerError as e:
                logger.error(f"Failed to list branches: {e}")
                return 1
            for branch in branches:
                print(branch)
            return 0

        catalog_path = config["catalog"]["path"]
        catalog_image = config["catalog"].get("image")
        is_remote = str(catalog_path).startswith(("http://", "https://"))
        if not is_remote and not Path(catalog_path).exists() and catalog_image:
            try:
                render_catalog_from_image(catalog_image, Path(catalog_path), logger)
            except AnalyzerError as e:
                logger.error(f"Failed to generate catalog: {e}")
                return 1

        logger.info(f"Reading index from: {catalog_path}")
        try:
            repositories = sorted(pipeline.extract_repositories(catalog_path))
        except AnalyzerError as e:
            logger.error(f"Failed to parse catalog ({e.kind.value}): {e}")
            return 1

        print("\n" + "=" * 80)
        print("UNIQUE REPOSITORIES FOUND:")
        print("=" * 80)
        for index, repo in enumerate(repositories, 1):
            print(f"{index:3d}. {repo}")
        print("=" * 80)

        generated_at = datetime.datetime.now(datetime.timezone.utc)
        output_path = args.output or (
            Path(config["report"].get("output_dir", DEFAULT_OUTPUT_DIR))
            / f"release-notes-{generated_at.strftime('%Y-%m-%d-%H-%M-%S')}.txt"
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)

        work_dir = Path(config["analysis"]["work_dir"])
        work_dir.mkdir(parents=True, exist_ok=True)
        try:
            results = pipeline.analyze_all(repositories)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        report_text = pipeline.renderer.render_run(results, generated_at)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(report_text)

        run_data = pipeline.renderer.build_run_data(results, generated_at)
        if config["report"].get("write_json", True):
            pipeline.renderer.render_json_report(run_data, output_path.with_suffix(".json"))
        write_summary_to_step_summary(run_data)

        summary = run_data["summary"]
        logger.info(
            f"Release notes saved to: {output_path} "
            f"(Success: {summary['succeeded']}, Failed: {summary['failed']})"
        )
        print(f"\n✅ Release notes saved to: {output_path}")
        print(f"   - Analyzed: {summary['total_repositories']} repositories")
        print(f"   - Failed: {summary['failed']}")

        return 0

    except KeyboardInterrupt:
        print("\n❌ Operation cancelled by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
