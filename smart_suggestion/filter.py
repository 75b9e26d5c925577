"""
Privacy Filter - Redacts credentials and secrets from shell text

Shell history and captured terminal output are scrubbed with this filter
before they are handed to a model as context. Matching is line-oriented
and regex based: assignments, flags, URLs and well-known token shapes are
strong syntactic signals in shell text, and a false positive is cheaper
than a leaked key.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_REPLACEMENT = "[REDACTED]"


class FilterLevel(IntEnum):
    """Ordered sensitivity tiers. Each level applies every lower level's patterns."""
    NONE = 0
    BASIC = 1
    MODERATE = 2
    STRICT = 3

    @classmethod
    def parse(cls, value: Union["FilterLevel", int, str]) -> "FilterLevel":
        """Accept a level, its integer value, or its name in any case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid filter level: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            name = value.strip()
            if name.isdigit():
                return cls(int(name))
            try:
                return cls[name.upper()]
            except KeyError:
                pass
        raise ValueError(f"invalid filter level: {value!r}")


@dataclass(frozen=True)
class FilterConfig:
    """
    Immutable privacy filter settings.

    A PrivacyFilter takes a snapshot of this at construction time; to change
    the settings build a new filter.
    """
    level: FilterLevel = FilterLevel.BASIC
    enabled: bool = True
    custom_patterns: Tuple[str, ...] = field(default_factory=tuple)
    replacement_text: str = DEFAULT_REPLACEMENT

    def __post_init__(self):
        object.__setattr__(self, "level", FilterLevel.parse(self.level))
        object.__setattr__(self, "custom_patterns", tuple(self.custom_patterns or ()))

    @classmethod
    def default(cls) -> "FilterConfig":
        return cls()

    @property
    def active(self) -> bool:
        return self.enabled and self.level > FilterLevel.NONE


# Every unbounded run in the catalogue starts at a fixed anchor or cannot
# overlap what follows it, so matching stays linear in the line length.

# Up to 32 whitespace-separated arguments on one line, fewest first
COMMAND_ARGS = r"(?:[ \t]+[^\s|]+){0,32}?"

# Built-in catalogue, in application order. Each tier only adds patterns.

BASIC_PATTERNS = [
    # Provider API keys
    ("OpenAI API Key", r"sk-[a-zA-Z0-9]{48,}"),
    ("OpenAI Project Key", r"pk-[a-zA-Z0-9]{48,}"),
    ("Anthropic API Key", r"sk-ant-[a-zA-Z0-9_\-]{32,}"),

    # Generic keys and auth headers
    ("Generic API Key", r"""(?i)api[_-]?key['"=:\s]+['"]*([a-zA-Z0-9_\-]{8,})['"]*"""),
    ("Bearer Token", r"(?i)bearer\s+([a-zA-Z0-9_\-\.]{2,})"),
    ("Authorization Header", r"""(?i)authorization['"=:\s]+['"]*([a-zA-Z0-9_\-\.]{2,})['"]*"""),

    # Exports of secret-named variables
    ("Export API Key", r"""(?i)export\s+[A-Z_]*(?:API|KEY|TOKEN|SECRET|PASSWORD)[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),
    ("Set Environment", r"""(?i)set\s+[A-Z_]*(?:API|KEY|TOKEN|SECRET|PASSWORD)[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),

    # Any assignment whose variable name marks it as a secret
    ("Env Var with KEY", r"""(?i)(?:export\s+|set\s+)?(?<![A-Z_])(?=[A-Z_]*=)[A-Z_]*KEY[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),
    ("Env Var with TOKEN", r"""(?i)(?:export\s+|set\s+)?(?<![A-Z_])(?=[A-Z_]*=)[A-Z_]*TOKEN[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),
    ("Env Var with SECRET", r"""(?i)(?:export\s+|set\s+)?(?<![A-Z_])(?=[A-Z_]*=)[A-Z_]*SECRET[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),
    ("Env Var with PASSWORD", r"""(?i)(?:export\s+|set\s+)?(?<![A-Z_])(?=[A-Z_]*=)[A-Z_]*PASSWORD[A-Z_]*=['"]*([^'"\s]{8,})['"]*"""),

    # Commands that print a secret
    ("Echo API Key", r"(?i)echo\s+\$[A-Z_]*(?:API|KEY|TOKEN|SECRET|PASSWORD)[A-Z_]*"),
    ("Echo Env Var", r"(?i)echo\s+\$[A-Z_]*(?:KEY|TOKEN|SECRET|PASSWORD)[A-Z_]*"),
    ("Command Substitution Secret", r"(?i)\$\((?=[^()]*\))[^()]*(?:API|KEY|TOKEN|SECRET|PASSWORD)[^()]*\)"),

    # Output of such commands: a line that is nothing but an opaque token
    ("Standalone Secret Value", r"(?m)^[a-zA-Z0-9_\-\.+/=]{20,}$"),
    ("Revealed Secret Line", (
        r"(?i)(?:^|\s)(?:sk-[a-zA-Z0-9]{48,}|pk-[a-zA-Z0-9]{48,}|ghp_[a-zA-Z0-9]{36}|ghs_[a-zA-Z0-9]{36}"
        r"|AKIA[0-9A-Z]{16}|xox[baprs]-[0-9a-zA-Z\-]{10,72})(?:\s|$)"
    )),

    # Well-known provider variables
    ("OpenAI API Key Env", r"""(?i)(?:export\s+|set\s+)?OPENAI_API_KEY=['"]*([^'"\s]{8,})['"]*"""),
    ("Anthropic API Key Env", r"""(?i)(?:export\s+|set\s+)?ANTHROPIC_API_KEY=['"]*([^'"\s]{8,})['"]*"""),
    ("Google API Key Env", r"""(?i)(?:export\s+|set\s+)?(?:GOOGLE_API_KEY|GEMINI_API_KEY)=['"]*([^'"\s]{8,})['"]*"""),
    ("AWS Keys Env", r"""(?i)(?:export\s+|set\s+)?(?:AWS_ACCESS_KEY_ID|AWS_SECRET_ACCESS_KEY)=['"]*([^'"\s]{8,})['"]*"""),
    ("GitHub Token Env", r"""(?i)(?:export\s+|set\s+)?(?:GITHUB_TOKEN|GH_TOKEN)=['"]*([^'"\s]{8,})['"]*"""),
    ("Azure Keys Env", r"""(?i)(?:export\s+|set\s+)?(?:AZURE_CLIENT_SECRET|AZURE_TENANT_ID)=['"]*([^'"\s]{8,})['"]*"""),
    ("Slack Token Env", r"""(?i)(?:export\s+|set\s+)?(?:SLACK_TOKEN|SLACK_BOT_TOKEN)=['"]*([^'"\s]{8,})['"]*"""),
    ("DeepSeek API Key Env", r"""(?i)(?:export\s+|set\s+)?DEEPSEEK_API_KEY=['"]*([^'"\s]{8,})['"]*"""),
    ("Stripe Keys Env", r"""(?i)(?:export\s+|set\s+)?(?:STRIPE_SECRET_KEY|STRIPE_PUBLISHABLE_KEY)=['"]*([^'"\s]{8,})['"]*"""),
    ("Twilio Keys Env", r"""(?i)(?:export\s+|set\s+)?(?:TWILIO_AUTH_TOKEN|TWILIO_ACCOUNT_SID)=['"]*([^'"\s]{8,})['"]*"""),
    ("SendGrid API Key Env", r"""(?i)(?:export\s+|set\s+)?SENDGRID_API_KEY=['"]*([^'"\s]{8,})['"]*"""),
    ("Mailgun API Key Env", r"""(?i)(?:export\s+|set\s+)?MAILGUN_API_KEY=['"]*([^'"\s]{8,})['"]*"""),
    ("Redis URL Env", r"""(?i)(?:export\s+|set\s+)?REDIS_URL=['"]*([^'"\s]{8,})['"]*"""),
    ("MongoDB URI Env", r"""(?i)(?:export\s+|set\s+)?(?:MONGODB_URI|MONGO_URL)=['"]*([^'"\s]{8,})['"]*"""),
    ("Database URL Env", r"""(?i)(?:export\s+|set\s+)?(?:DATABASE_URL|DB_URL)=['"]*([^'"\s]{8,})['"]*"""),
    ("JWT Secret Env", r"""(?i)(?:export\s+|set\s+)?(?:JWT_SECRET|JWT_KEY)=['"]*([^'"\s]{8,})['"]*"""),
    ("Encryption Key Env", r"""(?i)(?:export\s+|set\s+)?(?:ENCRYPTION_KEY|SECRET_KEY|SESSION_SECRET)=['"]*([^'"\s]{8,})['"]*"""),
    ("Docker Registry Env", r"""(?i)(?:export\s+|set\s+)?(?:DOCKER_PASSWORD|REGISTRY_TOKEN)=['"]*([^'"\s]{8,})['"]*"""),
    ("CI/CD Token Env", r"""(?i)(?:export\s+|set\s+)?(?:CI_TOKEN|GITLAB_TOKEN|JENKINS_TOKEN)=['"]*([^'"\s]{8,})['"]*"""),
    ("Cloud Provider Keys", r"""(?i)(?:export\s+|set\s+)?(?:DIGITALOCEAN_TOKEN|VULTR_API_KEY|LINODE_TOKEN)=['"]*([^'"\s]{8,})['"]*"""),

    # JWTs
    ("JWT Token", r"(?<![a-zA-Z0-9_\-])eyJ[a-zA-Z0-9_\-]*\.eyJ[a-zA-Z0-9_\-]*\.[a-zA-Z0-9_\-]*"),

    # Secret flags on the command line
    ("Password Parameter", r"""(?i)--password[=\s]+['"]*([^'"\s]{4,})['"]*"""),
    ("Token Parameter", r"""(?i)--token[=\s]+['"]*([^'"\s]{8,})['"]*"""),
    ("Secret Parameter", r"""(?i)--secret[=\s]+['"]*([^'"\s]{8,})['"]*"""),

    # Connection strings with credentials
    ("Database URL", r"(?i)(?:mysql|postgres|postgresql|mongodb|redis)://[^:@\s/]+:[^@\s/]+@\S+"),

    # Secret headers passed to curl/wget
    ("Curl Header Secret", (
        r"(?i)\bcurl" + COMMAND_ARGS
        + r"""[ \t]+(?:-H|--header)[= \t]*['"]?[\w-]*?(?:authorization|api[_-]?key|token)['"]*[=:]['"]*([^'"\s]{8,})['"]*"""
    )),
    ("Wget Header Secret", (
        r"(?i)\bwget" + COMMAND_ARGS
        + r"""[ \t]+--header[= \t]*['"]?[\w-]*?(?:authorization|api[_-]?key|token)['"]*[=:]['"]*([^'"\s]{8,})['"]*"""
    )),
]

MODERATE_PATTERNS = [
    # Emails used as credentials
    ("Email in Auth", r"""(?i)(?:user|username|email|login)['"=:\s]+['"]*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})['"]*"""),
    ("Email in curl -u", (
        r"(?i)\bcurl" + COMMAND_ARGS
        + r"[ \t]+-u[ \t]+([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}):([^@\s]+)"
    )),

    ("Private IP", r"\b(?:192\.168\.|10\.|172\.(?:1[6-9]|2[0-9]|3[01])\.)\d{1,3}\.\d{1,3}(?::\d+)?"),

    ("SSH Private Key", r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"),

    # Cloud compute credentials
    ("AWS Access Key", r"AKIA[0-9A-Z]{16}"),
    ("AWS Secret Key", r"""(?i)aws[_-]?secret[_-]?access[_-]?key['"=:\s]+['"]*([a-zA-Z0-9/+]{40})['"]*"""),
    ("Google API Key", r"AIza[0-9A-Za-z_\-]{35}"),

    # Source control tokens
    ("GitHub Token", r"ghp_[a-zA-Z0-9]{36}"),
    ("GitHub App Token", r"ghs_[a-zA-Z0-9]{36}"),
    ("GitHub OAuth Token", r"gho_[a-zA-Z0-9]{36}"),
    ("GitLab Token", r"glpat-[0-9a-zA-Z_\-]{20}"),

    # Chat platform tokens
    ("Slack Token", r"xox[baprs]-[0-9a-zA-Z-]{10,72}"),

    ("Password in URL", r"(?i)://[^:@\s/]+:([^@\s/]{4,})@"),
]

STRICT_PATTERNS = [
    # Unclassified high-entropy strings; also hits hashes and long paths
    ("Potential Secret", r"\b[a-zA-Z0-9]{32,}\b"),
    ("Credit Card", r"\b(?:4\d{3}|5[1-5]\d{2}|6011|65\d{2})[\s-]*\d{4}[\s-]*\d{4}[\s-]*\d{4}\b"),
    ("SSN", r"\b\d{3}-\d{2}-\d{4}\b"),
    ("Phone Number", r"""(?i)(?:phone|tel|mobile)['"=:\s]+['"]*([+]?[\d\s\-\(\)]{10,})['"]*"""),
]


def _compile_catalogue() -> List[Tuple[str, re.Pattern, FilterLevel]]:
    compiled = []
    for level, entries in (
        (FilterLevel.BASIC, BASIC_PATTERNS),
        (FilterLevel.MODERATE, MODERATE_PATTERNS),
        (FilterLevel.STRICT, STRICT_PATTERNS),
    ):
        for name, pattern in entries:
            compiled.append((name, re.compile(pattern), level))
    return compiled


BUILTIN_PATTERNS = _compile_catalogue()


@dataclass(frozen=True)
class SensitivePattern:
    """A named regex, the text that replaces its matches, and its minimum level."""
    name: str
    regex: re.Pattern
    replacement: str
    level: FilterLevel

    def apply(self, text: str) -> str:
        # Function replacement keeps backslashes in the replacement text literal
        return self.regex.sub(lambda _match: self.replacement, text)

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


class PrivacyFilter:
    """
    Applies the sensitive-pattern catalogue to shell text.

    Usage:
        privacy = PrivacyFilter(FilterConfig(level=FilterLevel.MODERATE))
        safe = privacy.filter_multiline_text(terminal_output)
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self._config = config or FilterConfig.default()
        self._replacement = self._config.replacement_text or DEFAULT_REPLACEMENT
        self._patterns = self._build_patterns()

    @property
    def config(self) -> FilterConfig:
        return self._config

    @property
    def replacement_text(self) -> str:
        return self._replacement

    @property
    def patterns(self) -> Tuple[SensitivePattern, ...]:
        """Patterns this filter applies, in application order."""
        return self._patterns

    def _build_patterns(self) -> Tuple[SensitivePattern, ...]:
        level = self._config.level
        built = []

        for name, regex, min_level in BUILTIN_PATTERNS:
            if min_level != FilterLevel.BASIC:
                continue
            built.append(SensitivePattern(name, regex, self._replacement, min_level))

        # Custom patterns rank as BASIC: after the built-in BASIC tier, before MODERATE
        for index, source in enumerate(self._config.custom_patterns, start=1):
            try:
                regex = re.compile(source)
            except re.error as e:
                logger.warning("Skipping custom pattern %d (%r): %s", index, source, e)
                continue
            built.append(SensitivePattern(f"Custom Pattern {index}", regex, self._replacement, FilterLevel.BASIC))

        for name, regex, min_level in BUILTIN_PATTERNS:
            if min_level == FilterLevel.BASIC:
                continue
            built.append(SensitivePattern(name, regex, self._replacement, min_level))

        return tuple(p for p in built if p.level <= level)

    def filter_text(self, text: str) -> str:
        """
        Replace every sensitive match in text.

        Patterns run in catalogue order over the progressively filtered
        string. A disabled filter, or level NONE, returns text unchanged.
        """
        if not self._config.active:
            return text

        filtered = text
        for pattern in self._patterns:
            filtered = pattern.apply(filtered)
        return filtered

    def filter_lines(self, lines: List[str]) -> List[str]:
        """Filter each line independently; count and order are preserved."""
        if not self._config.active:
            return list(lines)
        return [self.filter_text(line) for line in lines]

    def filter_multiline_text(self, text: str) -> str:
        if not self._config.active:
            return text
        return "\n".join(self.filter_lines(text.split("\n")))

    def detect_sensitive_patterns(self, text: str) -> Set[str]:
        """
        Names of the patterns that match somewhere in text.

        Only names are reported, never the matched values, so the result is
        safe to write to the diagnostic log.
        """
        if not self._config.active:
            return set()
        return {pattern.name for pattern in self._patterns if pattern.matches(text)}
