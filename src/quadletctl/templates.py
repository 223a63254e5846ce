"""Token discovery and substitution for Quadlet unit payloads.

Payloads carry two kinds of placeholders:

* the install path, spelled ``{{INSTALL_DIR}}`` or the legacy ``%%INSTALL_DIR%%``;
* arbitrary ``{{NAME}}`` tokens where ``NAME`` is upper-case letters, digits
  and underscores.

Values for named tokens are resolved once per name, trying in order an
explicit ``--var`` value, a known default (offered in a prompt), and a bare
prompt. Non-interactive runs fail on the first token without an explicit
value.
"""
from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import typer

from .config import TOKEN_NAME_RE, ConfigurationError
from .sources import UnitEntry

INSTALL_DIR_TOKEN = "INSTALL_DIR"
INSTALL_DIR_SPELLINGS = ("{{INSTALL_DIR}}", "%%INSTALL_DIR%%")
TOKEN_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")

PromptFn = Callable[[str, str | None], str]


class MissingTemplateValueError(RuntimeError):
    """Raised when a token required by a payload has no value."""

    def __init__(self, token: str, message: str | None = None) -> None:
        """Record the missing *token* name."""
        self.token = token
        super().__init__(
            message
            or f"Missing value for {{{{{token}}}}} while --non-interactive. "
            f"Provide --var {token}=VALUE"
        )


def typer_prompt(text: str, default: str | None) -> str:
    """Prompt on the terminal; an empty answer returns ``default`` or ``""``."""
    if default is None:
        return str(typer.prompt(text, default="", show_default=False))
    return str(typer.prompt(text, default=default, show_default=True))


def has_placeholder(value: str) -> bool:
    """Return True when *value* itself contains a template placeholder."""
    return bool(TOKEN_RE.search(value)) or any(s in value for s in INSTALL_DIR_SPELLINGS)


def parse_var_assignments(pairs: Iterable[str]) -> dict[str, str]:
    """Parse repeated ``KEY=VALUE`` strings into a mapping.

    ``KEY=`` is kept but treated as unset during resolution.
    """
    values: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"Bad --var format (KEY=VALUE): {pair}")
        if not TOKEN_NAME_RE.match(key):
            raise ConfigurationError(
                f"Bad --var name {key!r}: token names use A-Z, 0-9 and underscore."
            )
        if has_placeholder(value):
            raise ConfigurationError(f"Bad --var value for {key}: placeholders are not allowed.")
        values[key] = value
    return values


def scan_tokens(payloads: Iterable[str]) -> list[str]:
    """Return the sorted, distinct named tokens found across *payloads*."""
    found: set[str] = set()
    for payload in payloads:
        found.update(TOKEN_RE.findall(payload))
    found.discard(INSTALL_DIR_TOKEN)
    return sorted(found)


def substitute_install_dir(payload: str, install_dir: str) -> str:
    """Replace both install-path spellings with *install_dir* verbatim."""
    for spelling in INSTALL_DIR_SPELLINGS:
        payload = payload.replace(spelling, install_dir)
    return payload


@dataclass(slots=True)
class TemplateContext:
    """Resolved token values, including the fixed install path."""

    install_dir: str
    values: dict[str, str] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name == INSTALL_DIR_TOKEN or name in self.values

    def lookup(self, name: str) -> str | None:
        """Return the value for *name*, or ``None`` when unresolved."""
        if name == INSTALL_DIR_TOKEN:
            return self.install_dir
        return self.values.get(name)

    def as_dict(self) -> dict[str, str]:
        """Return every resolved value keyed by token name."""
        return {INSTALL_DIR_TOKEN: self.install_dir, **self.values}


@dataclass(slots=True)
class WorkingUnit:
    """Mutable working copy of a selected entry's payload."""

    entry: UnitEntry
    payload: str

    @classmethod
    def from_entry(cls, entry: UnitEntry) -> WorkingUnit:
        """Copy the entry's payload into a new working unit."""
        return cls(entry=entry, payload=entry.read_payload())


# Resolution strategies -------------------------------------------------
Strategy = Callable[[str], str | None]


def explicit_value(values: Mapping[str, str]) -> Strategy:
    """Use a non-empty value supplied by name on the command line."""

    def _resolve(name: str) -> str | None:
        return values.get(name) or None

    return _resolve


def require_interactive(interactive: bool) -> Strategy:
    """Fail fast when no operator is available to answer prompts."""

    def _resolve(name: str) -> str | None:
        if not interactive:
            raise MissingTemplateValueError(name)
        return None

    return _resolve


def prompt_with_default(defaults: Mapping[str, str], prompt: PromptFn) -> Strategy:
    """Offer a known default in a prompt; empty input accepts the default."""

    def _resolve(name: str) -> str | None:
        if name not in defaults:
            return None
        default = defaults[name]
        answer = prompt(f"Value for {{{{{name}}}}}", default)
        return answer if answer else default

    return _resolve


def prompt_required(prompt: PromptFn) -> Strategy:
    """Prompt without a default; an empty answer is fatal."""

    def _resolve(name: str) -> str | None:
        answer = prompt(f"Value for {{{{{name}}}}}", None)
        if not answer:
            raise MissingTemplateValueError(name, f"No value entered for {{{{{name}}}}}")
        return answer

    return _resolve


@dataclass(slots=True)
class TemplateEngine:
    """Resolve token values and rewrite payloads."""

    context: TemplateContext
    strategies: Sequence[Strategy]

    @classmethod
    def build(
        cls,
        install_dir: str,
        *,
        explicit: Mapping[str, str] | None = None,
        defaults: Mapping[str, str] | None = None,
        interactive: bool = True,
        prompt: PromptFn = typer_prompt,
    ) -> TemplateEngine:
        """Create an engine with the standard resolution order."""
        if has_placeholder(install_dir):
            raise ConfigurationError(
                f"Install path {install_dir!r} must not contain template placeholders."
            )
        explicit_values = dict(explicit or {})
        strategies: list[Strategy] = [
            explicit_value(explicit_values),
            require_interactive(interactive),
            prompt_with_default(dict(defaults or {}), prompt),
            prompt_required(prompt),
        ]
        context = TemplateContext(install_dir=install_dir)
        return cls(context=context, strategies=strategies)

    def resolve(self, tokens: Iterable[str]) -> TemplateContext:
        """Resolve every token in *tokens* not already in the context."""
        for name in tokens:
            if name in self.context:
                continue
            self.context.values[name] = self._resolve_one(name)
        return self.context

    def prepare(self, units: Sequence[WorkingUnit]) -> TemplateContext:
        """Scan *units* for tokens and resolve values for each distinct name."""
        return self.resolve(scan_tokens(unit.payload for unit in units))

    def render(self, payload: str) -> str:
        """Apply install-path and named-token substitution to *payload*."""
        payload = substitute_install_dir(payload, self.context.install_dir)
        return TOKEN_RE.sub(self._replacement, payload)

    def render_units(self, units: Sequence[WorkingUnit]) -> None:
        """Rewrite every working unit's payload in place."""
        for unit in units:
            unit.payload = self.render(unit.payload)

    # ------------------------------------------------------------------
    def _resolve_one(self, name: str) -> str:
        for strategy in self.strategies:
            value = strategy(name)
            if value is None:
                continue
            if has_placeholder(value):
                raise ConfigurationError(
                    f"Value for {{{{{name}}}}} must not contain template placeholders."
                )
            return value
        raise MissingTemplateValueError(name, f"No value could be resolved for {{{{{name}}}}}")

    def _replacement(self, match: re.Match[str]) -> str:
        name = match.group(1)
        value = self.context.lookup(name)
        if value is None:
            raise MissingTemplateValueError(name, f"Token {{{{{name}}}}} was never resolved.")
        return value


__all__ = [
    "INSTALL_DIR_SPELLINGS",
    "INSTALL_DIR_TOKEN",
    "MissingTemplateValueError",
    "TemplateContext",
    "TemplateEngine",
    "WorkingUnit",
    "has_placeholder",
    "parse_var_assignments",
    "scan_tokens",
    "substitute_install_dir",
    "typer_prompt",
]
