"""
Versioned prompt templates and rendering.

Templates use ``{{variable}}`` placeholders. A registry keeps every registered
version of a template; rendering always uses the highest version unless a
specific one is requested. ``compare_templates`` classifies the differences
between two versions so a release can be tagged with the right semantic
version bump.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_VERSION = re.compile(r"^(\d+)\.(\d+)\.(\d+)")

PATTERN_CLASSIFICATION_PROMPT = "bim-pattern-classification"


class PromptRenderer(Protocol):
    """Renders a named prompt with variables into the final prompt text."""

    def render(self, name: str, variables: Mapping[str, Any]) -> str: ...


@dataclass(frozen=True)
class PromptParameter:
    """Declared input of a prompt template."""

    name: str
    required: bool = True
    description: Optional[str] = None
    default: Optional[str] = None


@dataclass(frozen=True)
class PromptTemplate:
    """A named, versioned prompt with declared parameters."""

    name: str
    version: str
    content: str
    description: str = ""
    parameters: Tuple[PromptParameter, ...] = ()
    min_tokens: Optional[int] = None
    temperature: Optional[float] = None

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    @property
    def placeholders(self) -> List[str]:
        return list(dict.fromkeys(_PLACEHOLDER.findall(self.content)))

    def parameter(self, name: str) -> Optional[PromptParameter]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def render(self, variables: Mapping[str, Any]) -> str:
        """
        Substitute placeholders with variable values.

        Args:
            variables: Values by placeholder name

        Returns:
            Rendered prompt text

        Raises:
            ValidationError: If a required variable is missing
        """
        missing = [
            p.name
            for p in self.parameters
            if p.required and variables.get(p.name) is None
        ]
        if missing:
            raise ValidationError(
                f"Missing required prompt variables for '{self.name}': {', '.join(missing)}",
                field="variables",
            )

        def substitute(match: "re.Match[str]") -> str:
            name = match.group(1)
            value = variables.get(name)
            if value is None:
                parameter = self.parameter(name)
                if parameter is None:
                    raise ValidationError(
                        f"Undeclared placeholder '{name}' in prompt '{self.name}' has no value",
                        field=name,
                    )
                return parameter.default or ""
            return str(value)

        return _PLACEHOLDER.sub(substitute, self.content)


def parse_version(version: str) -> Tuple[int, int, int]:
    """Parse ``major.minor.patch``, ignoring any pre-release suffix."""
    match = _VERSION.match(version.split("-")[0])
    if not match:
        return (0, 0, 0)
    return tuple(int(part) for part in match.groups())


class PromptRegistry:
    """In-process store of prompt template versions."""

    def __init__(self, templates: Optional[List[PromptTemplate]] = None):
        self._templates: Dict[str, Dict[str, PromptTemplate]] = {}
        for template in templates or []:
            self.register(template)

    def register(self, template: PromptTemplate) -> None:
        """Register a template version, replacing the same name and version."""
        self._templates.setdefault(template.name, {})[template.version] = template
        logger.info(f"Registered version {template.version} for prompt '{template.name}'")

    def get(self, name: str, version: Optional[str] = None) -> PromptTemplate:
        """
        Look up a template.

        Args:
            name: Template name
            version: Exact version, or None for the latest

        Returns:
            The matching template

        Raises:
            ConfigurationError: If no such template or version is registered
        """
        versions = self._templates.get(name)
        if not versions:
            raise ConfigurationError(
                f"Prompt template '{name}' is not registered",
                parameter="prompt_name",
                suggested_fix="Register the template before rendering it",
            )

        if version is None:
            return max(versions.values(), key=lambda t: parse_version(t.version))

        if version not in versions:
            raise ConfigurationError(
                f"Prompt template '{name}' has no version {version}",
                parameter="prompt_version",
                suggested_fix=f"Use one of: {', '.join(sorted(versions))}",
            )
        return versions[version]

    def history(self, name: str) -> List[PromptTemplate]:
        """All versions of a template, newest first."""
        return sorted(
            self._templates.get(name, {}).values(),
            key=lambda t: parse_version(t.version),
            reverse=True,
        )


class TemplatePromptRenderer:
    """PromptRenderer backed by a PromptRegistry."""

    def __init__(self, registry: Optional[PromptRegistry] = None):
        self.registry = registry or default_registry()

    def render(self, name: str, variables: Mapping[str, Any]) -> str:
        template = self.registry.get(name)
        rendered = template.render(variables)
        logger.debug(
            f"Rendered prompt '{name}' v{template.version} ({len(rendered)} chars)"
        )
        return rendered


class ChangeKind(Enum):
    """Kinds of differences between two prompt versions."""

    CONTENT = "content"
    DESCRIPTION = "description"
    PARAMETER_REMOVED = "parameter_removed"
    PARAMETER_ADDED = "parameter_added"
    REQUIREMENT_CHANGED = "requirement_changed"
    MIN_TOKENS_CHANGED = "min_tokens_changed"
    TEMPERATURE_CHANGED = "temperature_changed"


@dataclass(frozen=True)
class PromptChange:
    kind: ChangeKind
    description: str
    breaking: bool = False


@dataclass
class PromptVersionComparison:
    """Structured differences between two versions of a prompt."""

    prompt_name: str
    old_version: str
    new_version: str
    changes: List[PromptChange] = field(default_factory=list)

    @property
    def content_changed(self) -> bool:
        return any(c.kind is ChangeKind.CONTENT for c in self.changes)

    @property
    def schema_changed(self) -> bool:
        return any(
            c.kind
            in (
                ChangeKind.PARAMETER_ADDED,
                ChangeKind.PARAMETER_REMOVED,
                ChangeKind.REQUIREMENT_CHANGED,
            )
            for c in self.changes
        )

    @property
    def is_breaking(self) -> bool:
        return any(c.breaking for c in self.changes)

    def __str__(self) -> str:
        return (
            f"{self.prompt_name}: {self.old_version} -> {self.new_version} "
            f"({len(self.changes)} changes, breaking: {self.is_breaking})"
        )


def compare_templates(old: PromptTemplate, new: PromptTemplate) -> PromptVersionComparison:
    """
    Compare two versions of a prompt template.

    A change is breaking when existing callers could no longer render the
    new version or when it needs a larger model context: a removed
    parameter, a parameter that became required, a new required parameter,
    or a higher minimum token requirement.
    """
    comparison = PromptVersionComparison(
        prompt_name=old.name, old_version=old.version, new_version=new.version
    )
    changes = comparison.changes

    if old.content_hash != new.content_hash:
        changes.append(PromptChange(ChangeKind.CONTENT, "Prompt content modified"))

    if old.description != new.description:
        changes.append(
            PromptChange(
                ChangeKind.DESCRIPTION,
                f"Description changed from '{old.description}' to '{new.description}'",
            )
        )

    old_params = {p.name: p for p in old.parameters}
    new_params = {p.name: p for p in new.parameters}

    for name in old_params:
        if name not in new_params:
            changes.append(
                PromptChange(
                    ChangeKind.PARAMETER_REMOVED,
                    f"Removed parameter '{name}'",
                    breaking=True,
                )
            )

    for name, parameter in new_params.items():
        if name not in old_params:
            changes.append(
                PromptChange(
                    ChangeKind.PARAMETER_ADDED,
                    f"Added {'required' if parameter.required else 'optional'} parameter '{name}'",
                    breaking=parameter.required,
                )
            )

    for name, old_param in old_params.items():
        new_param = new_params.get(name)
        if new_param is not None and old_param.required != new_param.required:
            changes.append(
                PromptChange(
                    ChangeKind.REQUIREMENT_CHANGED,
                    f"Parameter '{name}' required changed from {old_param.required} to {new_param.required}",
                    breaking=new_param.required,
                )
            )

    if old.min_tokens != new.min_tokens:
        increased = (new.min_tokens or 0) > (old.min_tokens or 0)
        changes.append(
            PromptChange(
                ChangeKind.MIN_TOKENS_CHANGED,
                f"Min tokens changed from {old.min_tokens} to {new.min_tokens}",
                breaking=increased,
            )
        )

    if old.temperature != new.temperature:
        changes.append(
            PromptChange(
                ChangeKind.TEMPERATURE_CHANGED,
                f"Temperature changed from {old.temperature} to {new.temperature}",
            )
        )

    return comparison


def suggest_next_version(current_version: str, comparison: PromptVersionComparison) -> str:
    """Semantic version bump implied by a comparison."""
    major, minor, patch = parse_version(current_version)

    if comparison.is_breaking:
        return f"{major + 1}.0.0"

    if comparison.schema_changed or len(comparison.changes) > 3:
        return f"{major}.{minor + 1}.0"

    return f"{major}.{minor}.{patch + 1}"


PATTERN_CLASSIFICATION_TEMPLATE = PromptTemplate(
    name=PATTERN_CLASSIFICATION_PROMPT,
    version="1.0.0",
    description="Suggest commodity and pricing codes for a group of identical BIM elements",
    min_tokens=4096,
    temperature=0.0,
    parameters=(
        PromptParameter("pattern_json", description="Bounded JSON projection of the pattern"),
        PromptParameter("element_count", description="Number of elements sharing the pattern"),
        PromptParameter("output_schema", description="JSON schema the answer must satisfy"),
        PromptParameter(
            "project_context",
            required=False,
            description="Optional free-text context about the project",
        ),
    ),
    content=(
        "You are a quantity surveying assistant classifying building information "
        "model (BIM) elements.\n"
        "All {{element_count}} elements of the pattern below share the same "
        "category, family, type, material and location type. Suggest the commodity "
        "code and pricing code that best fit the whole pattern, plus any derived "
        "line items (for example insulation or supports) with a quantity formula "
        "over the element dimensions.\n"
        "Your suggestion is advisory and will be reviewed by a person.\n"
        "{{project_context}}\n"
        "Pattern:\n"
        "{{pattern_json}}\n\n"
        "Respond with a single JSON object and nothing else. It must match this "
        "JSON schema exactly:\n"
        "{{output_schema}}\n"
    ),
)


def default_registry() -> PromptRegistry:
    """Registry preloaded with the built-in prompts."""
    return PromptRegistry([PATTERN_CLASSIFICATION_TEMPLATE])
