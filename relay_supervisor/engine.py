"""Trigger -> rule -> action dispatch.

`RuleEngine` owns the compiled rule table. `load_rules` rebuilds it from
scratch and swaps it in; `fire` looks up a trigger and runs every matching
rule in registration order, applying the series guard first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

import httpx

from .actions import BlinkGate, ExecutionContext, Relay, execute_action
from .models.actions import Action
from .models.app_config import RuleConfig
from .state import RelayStateStore

logger = logging.getLogger(__name__)


def normalize_trigger(name: str | None) -> str:
    return (name or "").strip().lower()


def _clean(value: str | None) -> Optional[str]:
    text = (value or "").strip()
    return text or None


@dataclass(frozen=True)
class CompiledRule:
    trigger: str
    series: Optional[str]
    allow_when_last_series: Optional[frozenset[str]]
    actions: tuple[Action, ...]

    def allows(self, last_series: str | None) -> bool:
        """Series guard: an unknown last series always allows."""
        if not self.allow_when_last_series:
            return True
        last = _clean(last_series)
        if last is None:
            return True
        return last.lower() in self.allow_when_last_series


def compile_rule(rule: RuleConfig) -> CompiledRule:
    allow = frozenset(
        s.strip().lower() for s in (rule.allow_when_last_series or []) if s and s.strip()
    )
    return CompiledRule(
        trigger=normalize_trigger(rule.trigger),
        series=_clean(rule.series),
        allow_when_last_series=allow or None,
        actions=tuple(rule.actions),
    )


@dataclass(frozen=True)
class RuleOutcome:
    """Result of one rule run for a fired trigger."""

    trigger: str
    series: Optional[str]
    skipped: bool = False
    actions_run: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RuleEngine:
    def __init__(
        self,
        relay: Relay,
        state_store: RelayStateStore,
        blink_gate: BlinkGate | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.relay = relay
        self.state_store = state_store
        self.blink_gate = blink_gate or BlinkGate()
        self.http = http
        self._rules: dict[str, tuple[CompiledRule, ...]] = {}

    @property
    def triggers(self) -> list[str]:
        return sorted(self._rules)

    def rules_for(self, trigger: str) -> tuple[CompiledRule, ...]:
        return self._rules.get(normalize_trigger(trigger), ())

    def load_rules(self, rules: Iterable[RuleConfig]) -> int:
        """Replace the rule table; returns the number of compiled rules."""
        table: dict[str, list[CompiledRule]] = {}
        count = 0
        for rule in rules:
            if not rule.enabled:
                continue
            compiled = compile_rule(rule)
            if not compiled.trigger:
                logger.warning("Skipping rule without a trigger: %s", rule)
                continue
            table.setdefault(compiled.trigger, []).append(compiled)
            count += 1
        self._rules = {k: tuple(v) for k, v in table.items()}
        logger.info("Loaded %d rule(s) for %d trigger(s)", count, len(self._rules))
        return count

    async def fire(
        self, trigger: str, data: Mapping[str, str] | None = None
    ) -> list[RuleOutcome]:
        key = normalize_trigger(trigger)
        rules = self._rules.get(key)
        if not rules:
            logger.debug("No rules for trigger %s", key)
            return []

        outcomes: list[RuleOutcome] = []
        for rule in rules:
            last_series = self.state_store.snapshot.last_series
            if not rule.allows(last_series):
                logger.info(
                    "Rule for %s skipped: last series %r not in %s",
                    key,
                    last_series,
                    sorted(rule.allow_when_last_series or ()),
                )
                outcomes.append(RuleOutcome(key, rule.series, skipped=True))
                continue

            merged = dict(data or {})
            if rule.series and "series" not in merged:
                merged["series"] = rule.series
            ctx = ExecutionContext(
                trigger=key,
                data=merged,
                relay=self.relay,
                state_store=self.state_store,
                blink_gate=self.blink_gate,
                http=self.http,
            )
            outcomes.append(await self._run_rule(rule, ctx))
        return outcomes

    async def _run_rule(self, rule: CompiledRule, ctx: ExecutionContext) -> RuleOutcome:
        done = 0
        for action in rule.actions:
            try:
                await execute_action(action, ctx)
            except Exception as e:
                logger.error(
                    "Action %s failed for trigger %s: %s",
                    type(action).__name__,
                    ctx.trigger,
                    e,
                    exc_info=True,
                )
                return RuleOutcome(ctx.trigger, ctx.series, actions_run=done, error=e)
            done += 1
        return RuleOutcome(ctx.trigger, ctx.series, actions_run=done)
