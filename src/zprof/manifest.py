"""Profile manifest model, parser and validator.

The manifest (``profile.toml``) is the single source of truth for a
profile. Everything else in a profile directory is generated from it::

    [profile]
    name = "work"
    framework = "oh-my-zsh"
    theme = "robbyrussell"

    [plugins]
    enabled = ["git", "docker"]

    [env]
    EDITOR = "nvim"

Validation is all-or-nothing: every violation in the document is collected
in one pass and reported together, each with a short example of correct
syntax.
"""

import logging
import re
import tomllib
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import tomli_w
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import ErrorDetails

from zprof.errors import (
    InvalidProfileNameError,
    ManifestParseError,
    ManifestValidationError,
    ProfileNotFoundError,
    SchemaViolation,
)
from zprof.home import get_zprof_home, manifest_path

logger = logging.getLogger(__name__)


class Framework(str, Enum):
    """Supported zsh frameworks."""

    OH_MY_ZSH = "oh-my-zsh"
    ZIMFW = "zimfw"
    PREZTO = "prezto"
    ZINIT = "zinit"
    ZAP = "zap"


SUPPORTED_FRAMEWORKS = tuple(f.value for f in Framework)

ENV_KEY_PATTERN = re.compile(r"[A-Za-z0-9_]+")

# One-line examples of correct syntax, keyed by top-level field
EXAMPLES = {
    "profile": '[profile] table with name = "work" and framework = "oh-my-zsh"',
    "name": 'name = "work"',
    "framework": 'framework = "oh-my-zsh"',
    "plugins": 'enabled = ["git", "docker"]',
    "env": 'EDITOR = "vim"',
    "theme": 'theme = "robbyrussell"',
    "created": "created = 2026-01-01T09:00:00Z",
    "modified": "modified = 2026-01-01T09:00:00Z",
}

# Order in which violations are reported
_FIELD_ORDER = {"profile": 0, "name": 1, "framework": 2, "plugins": 3, "env": 4, "theme": 5}

_TOML_LOCATION = re.compile(r"\s*\(at line (\d+), column (\d+)\)$")
_TOML_END = re.compile(r"\s*\(at end of document\)$")


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def profile_name_problem(name: str) -> str | None:
    """Return why ``name`` cannot be a profile name, or None if it can."""
    if not name.strip():
        return "name must not be empty"
    if "/" in name or "\\" in name or name in (".", ".."):
        return f"profile name {name!r} must not contain path separators"
    return None


def check_profile_name(name: str) -> str:
    """Ensure a profile name is usable as a directory name.

    Raises:
        InvalidProfileNameError: If the name is empty or contains path separators.
    """
    problem = profile_name_problem(name)
    if problem is not None:
        raise InvalidProfileNameError(name, problem)
    return name


def _check_plugin(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        msg = "plugin name must not be empty or whitespace-only"
        raise ValueError(msg)
    return stripped


def _check_env_key(value: str) -> str:
    if not ENV_KEY_PATTERN.fullmatch(value):
        msg = (
            f"invalid environment variable name {value!r}; "
            "names may contain only letters, digits and underscores"
        )
        raise ValueError(msg)
    return value


PluginName = Annotated[str, AfterValidator(_check_plugin)]
EnvKey = Annotated[str, AfterValidator(_check_env_key)]


class StrictSection(BaseModel):
    """Base model that forbids unknown keys."""

    model_config = ConfigDict(extra="forbid")


class ProfileSection(StrictSection):
    """The [profile] table."""

    name: str = Field(description="Profile name, equal to its directory name")
    framework: Framework = Field(description="One of the five supported frameworks")
    theme: str | None = Field(default=None, description="Framework theme, if any")
    created: datetime = Field(default_factory=_now)
    modified: datetime = Field(default_factory=_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the profile name is non-empty and has no path separators."""
        problem = profile_name_problem(v)
        if problem is not None:
            raise ValueError(problem)
        return v

    @field_validator("framework", mode="before")
    @classmethod
    def validate_framework(cls, v: Any) -> Any:
        """Reject anything outside the framework whitelist, naming all choices."""
        if isinstance(v, Framework):
            return v
        if not isinstance(v, str) or v not in SUPPORTED_FRAMEWORKS:
            msg = (
                f"unsupported framework {v!r}; "
                f"supported frameworks: {', '.join(SUPPORTED_FRAMEWORKS)}"
            )
            raise ValueError(msg)
        return v

    @field_validator("theme")
    @classmethod
    def validate_theme(cls, v: str | None) -> str | None:
        """Validate a present theme is not blank."""
        if v is not None and not v.strip():
            msg = "theme must not be empty or whitespace-only; remove the key for no theme"
            raise ValueError(msg)
        return v


class PluginsSection(StrictSection):
    """The [plugins] table. Order of ``enabled`` is load order."""

    enabled: list[PluginName] = Field(default_factory=list)


class Manifest(StrictSection):
    """Root schema for profile.toml files."""

    profile: ProfileSection
    plugins: PluginsSection = Field(default_factory=PluginsSection)
    env: dict[EnvKey, str] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def framework(self) -> Framework:
        return self.profile.framework

    @property
    def theme(self) -> str | None:
        return self.profile.theme

    @property
    def enabled_plugins(self) -> list[str]:
        return self.plugins.enabled


@dataclass
class ManifestValid:
    """The whole document passed validation."""

    manifest: Manifest


@dataclass
class ManifestInvalid:
    """One or more schema violations, in check order. Never empty."""

    violations: list[SchemaViolation]


ValidationOutcome = ManifestValid | ManifestInvalid


def parse_manifest(raw_text: str, path: Path | None = None) -> dict[str, Any]:
    """Parse manifest text into a TOML document.

    Args:
        raw_text: Contents of a profile.toml file.
        path: Where the text came from, used in error messages.

    Returns:
        The parsed document, not yet validated.

    Raises:
        ManifestParseError: If the text is not valid TOML. ``line`` and
            ``column`` are set when the parser reports a location.
    """
    try:
        return tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError as e:
        line, column, reason = _decode_error_details(e)
        raise ManifestParseError(reason, line=line, column=column, path=path) from e


def _decode_error_details(error: tomllib.TOMLDecodeError) -> tuple[int | None, int | None, str]:
    """Extract line, column and bare message from a TOML decode error."""
    # Python 3.14+ exposes the location as attributes
    line = getattr(error, "lineno", None)
    column = getattr(error, "colno", None)
    reason = getattr(error, "msg", None)
    if line is not None and reason:
        return line, column, reason

    text = str(error)
    match = _TOML_LOCATION.search(text)
    if match:
        return int(match.group(1)), int(match.group(2)), text[: match.start()]
    return None, None, _TOML_END.sub("", text)


def validate_manifest(document: dict[str, Any], expected_name: str | None = None) -> ValidationOutcome:
    """Validate a parsed manifest document.

    Collects every violation rather than stopping at the first one. Checks
    are reported in order: name, framework, plugins, env, theme, then
    anything else.

    Args:
        document: Output of ``parse_manifest``.
        expected_name: Profile directory name the manifest must declare.

    Returns:
        ManifestValid with the model, or ManifestInvalid with the violations.
    """
    violations: list[SchemaViolation] = []
    manifest: Manifest | None = None

    try:
        manifest = Manifest.model_validate(document)
    except ValidationError as e:
        violations.extend(_violation_from_error(err) for err in e.errors())

    if expected_name is not None:
        declared = _declared_name(document)
        if isinstance(declared, str) and declared.strip() and declared != expected_name:
            violations.append(
                SchemaViolation(
                    field_path="name",
                    message=(
                        f"name {declared!r} does not match profile directory {expected_name!r}; "
                        "profiles cannot be renamed by editing the manifest"
                    ),
                    example=f'name = "{expected_name}"',
                )
            )

    if violations:
        violations.sort(key=lambda v: _FIELD_ORDER.get(v.field, len(_FIELD_ORDER)))
        return ManifestInvalid(violations=violations)

    assert manifest is not None
    return ManifestValid(manifest=manifest)


def _declared_name(document: dict[str, Any]) -> Any:
    profile = document.get("profile")
    if isinstance(profile, dict):
        return profile.get("name")
    return None


def _field_path(loc: tuple[int | str, ...]) -> str:
    """Render a pydantic error location as a manifest field path."""
    parts = [p for p in loc if p != "[key]"]
    if not parts:
        return "manifest"

    head = parts[0]
    if head == "profile" and len(parts) > 1:
        return ".".join(str(p) for p in parts[1:])
    if head == "plugins":
        if len(parts) > 2 and parts[1] == "enabled":
            return f"plugins[{parts[2]}]"
        if len(parts) > 1 and parts[1] != "enabled":
            return f"plugins.{parts[1]}"
        return "plugins"
    if head == "env" and len(parts) > 1:
        return f"env.{parts[1]}"
    return ".".join(str(p) for p in parts)


def _violation_from_error(err: ErrorDetails) -> SchemaViolation:
    loc = err["loc"]
    path = _field_path(loc)
    error_type = err["type"]

    if error_type == "value_error":
        message = str(err.get("ctx", {}).get("error", err["msg"]))
    elif error_type == "missing":
        message = "field is required"
    elif error_type == "extra_forbidden":
        message = f"unknown field {loc[-1]!r}"
    elif error_type == "string_type":
        message = f"expected a string, got {type(err['input']).__name__}"
    elif error_type == "list_type":
        message = "expected a list of strings"
    elif error_type in ("model_type", "dict_type", "model_attributes_type"):
        message = "expected a table"
    else:
        message = err["msg"]

    if path.startswith("plugins[") and len(loc) > 2:
        message = f"plugin at index {loc[2]}: {message}"

    root = path.split("[", 1)[0].split(".", 1)[0]
    example = EXAMPLES.get(root, '[profile] name = "work", framework = "oh-my-zsh"')
    return SchemaViolation(field_path=path, message=message, example=example)


def check_manifest_text(raw_text: str, path: Path | None = None, expected_name: str | None = None) -> Manifest:
    """Parse and validate manifest text in one step.

    Raises:
        ManifestParseError: If the text is not valid TOML.
        ManifestValidationError: If the document has schema violations.
    """
    document = parse_manifest(raw_text, path)
    outcome = validate_manifest(document, expected_name=expected_name)
    match outcome:
        case ManifestValid(manifest=manifest):
            return manifest
        case ManifestInvalid(violations=violations):
            raise ManifestValidationError(violations, path=path)


def new_manifest(
    name: str,
    framework: Framework | str,
    theme: str | None = None,
    plugins: list[str] | tuple[str, ...] = (),
    env: dict[str, str] | None = None,
) -> Manifest:
    """Build a fresh manifest with both timestamps set to now.

    Raises:
        ManifestValidationError: If any field is invalid.
    """
    now = _now()
    profile: dict[str, Any] = {
        "name": name,
        "framework": framework.value if isinstance(framework, Framework) else framework,
        "created": now,
        "modified": now,
    }
    if theme is not None:
        profile["theme"] = theme

    document = {"profile": profile, "plugins": {"enabled": list(plugins)}, "env": dict(env or {})}
    match validate_manifest(document):
        case ManifestValid(manifest=manifest):
            return manifest
        case ManifestInvalid(violations=violations):
            raise ManifestValidationError(violations)


def load_and_validate(profile_name: str, home: Path | None = None) -> Manifest:
    """Load and validate a profile's manifest.

    Args:
        profile_name: Name of the profile (its directory name).
        home: zprof home; resolved from the environment if None.

    Returns:
        The validated Manifest.

    Raises:
        InvalidProfileNameError: If the name cannot name a directory.
        ProfileNotFoundError: If the profile has no manifest.
        ManifestParseError: If the manifest is not valid TOML or not UTF-8.
        ManifestValidationError: If the manifest has schema violations.
    """
    check_profile_name(profile_name)
    home = home if home is not None else get_zprof_home()
    path = manifest_path(home, profile_name)
    if not path.is_file():
        raise ProfileNotFoundError(profile_name, path)

    logger.debug("Loading manifest %s", path)
    return check_manifest_text(read_manifest_text(path), path=path, expected_name=profile_name)


def read_manifest_text(path: Path) -> str:
    """Read a manifest file as UTF-8 text.

    Raises:
        ManifestParseError: If the file is not valid UTF-8.
    """
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        msg = f"manifest is not valid UTF-8 text ({e.reason})"
        raise ManifestParseError(msg, path=path) from e


def dump_manifest(manifest: Manifest) -> str:
    """Serialize a Manifest to TOML text."""
    data = manifest.model_dump(exclude_none=True)
    data["profile"]["framework"] = manifest.profile.framework.value
    return tomli_w.dumps(data)


def save_manifest(manifest: Manifest, path: Path) -> None:
    """Write a Manifest to a profile.toml file."""
    path.write_text(dump_manifest(manifest))
