"""
Base control classes — the contract every CIS control implements.

A control walks INIT → CONNECTING → EVALUATING → terminal status. Any
exception raised while connecting or evaluating becomes ERROR with the
exception text as detail; nothing is retried.

Field comparisons go through ``Expect``: an explicit per-field schema that
states the expected value and what an absent field means. Without a declared
``default`` an absent field is non-compliant.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..config import AuditConfig
from ..models import (
    ControlResult,
    CONNECTING,
    EVALUATING,
    ERROR,
    FAIL,
    MANUAL,
    PASS,
)
from ..session import EXCHANGE, GRAPH

logger = logging.getLogger("cis_m365_audit.controls")

_UNSET = object()


# ─── Field expectations ─────────────────────────────────────────────────────

def get_field(obj: Mapping, path: str) -> Any:
    """Read a dotted path; returns the _UNSET sentinel when any hop is absent."""
    current: Any = obj
    for key in path.split("."):
        if not isinstance(current, Mapping) or current.get(key) is None:
            return _UNSET
        current = current[key]
    return current


def _same(found: Any, expected: Any) -> bool:
    if isinstance(expected, bool):
        return found is expected
    if isinstance(expected, str) and isinstance(found, str):
        return found.lower() == expected.lower()
    return found == expected


@dataclass(frozen=True)
class Expect:
    """Expected state of one field of a remote configuration object."""
    field: str
    equals: Any = _UNSET
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    one_of: tuple = ()
    non_empty: bool = False
    empty: bool = False
    default: Any = _UNSET   # value assumed when the field is absent

    def describe(self) -> str:
        if self.equals is not _UNSET:
            return repr(self.equals) if isinstance(self.equals, str) else str(self.equals)
        if self.minimum is not None and self.maximum is not None:
            return f"between {self.minimum:g} and {self.maximum:g}"
        if self.minimum is not None:
            return f"at least {self.minimum:g}"
        if self.maximum is not None:
            return f"at most {self.maximum:g}"
        if self.one_of:
            return "one of " + ", ".join(repr(v) for v in self.one_of)
        if self.non_empty:
            return "a non-empty value"
        if self.empty:
            return "empty"
        return "any value"

    def check(self, value: Any) -> bool:
        if self.equals is not _UNSET and not _same(value, self.equals):
            return False
        if self.minimum is not None or self.maximum is not None:
            if isinstance(value, bool):
                return False
            try:
                number = float(value)
            except (TypeError, ValueError):
                return False
            if self.minimum is not None and number < self.minimum:
                return False
            if self.maximum is not None and number > self.maximum:
                return False
        if self.one_of and not any(_same(value, v) for v in self.one_of):
            return False
        if self.non_empty and not value:
            return False
        if self.empty and value:
            return False
        return True

    def mismatch(self, obj: Mapping) -> Optional[str]:
        """A human-readable mismatch, or None when compliant."""
        value = get_field(obj, self.field)
        if value is _UNSET:
            if self.default is _UNSET:
                return f"{self.field}: expected {self.describe()}, not set"
            value = self.default
        if self.check(value):
            return None
        return f"{self.field}: expected {self.describe()}, found {value!r}"


def compare_fields(obj: Mapping, expectations: Iterable[Expect]) -> list[str]:
    """Every mismatching field of ``obj``, in expectation order."""
    return [m for m in (e.mismatch(obj) for e in expectations) if m]


# ─── Rule selection ─────────────────────────────────────────────────────────

def _priority(rule: Mapping) -> float:
    try:
        return float(rule.get("Priority"))
    except (TypeError, ValueError):
        return float("inf")


def select_effective_rule(rules: Sequence[Mapping]) -> Optional[Mapping]:
    """
    The rule that wins for a message: lowest numeric Priority among rules
    that are not disabled. On equal priority the first one listed wins.
    """
    enabled = [
        r for r in rules
        if str(r.get("State") or "Enabled").lower() != "disabled"
    ]
    if not enabled:
        return None
    return min(enabled, key=_priority)


def object_label(obj: Mapping) -> str:
    return str(obj.get("Identity") or obj.get("Name") or obj.get("id") or "<unnamed>")


def is_default_policy(obj: Mapping) -> bool:
    if obj.get("IsDefault") is True:
        return True
    return str(obj.get("Identity") or obj.get("Name") or "").lower() == "default"


# ─── Controls ───────────────────────────────────────────────────────────────

class BaseControl(ABC):
    """
    Abstract base class for all controls.

    Subclasses implement evaluate() and finish the result with a status.
    The base class provides:
      - Connection of the required services
      - Timing and state tracking
      - Conversion of any exception to ERROR
    """

    control_id: str = ""
    title: str = ""
    section: str = ""
    level: int = 1
    services: tuple[str, ...] = (GRAPH,)

    def __init__(self, config: Optional[AuditConfig] = None):
        self.config = config or AuditConfig()

    async def run(self, session) -> ControlResult:
        result = ControlResult(
            control_id=self.control_id,
            title=self.title,
            section=self.section,
            level=self.level,
        )
        started = time.time()
        logger.info(f"[{self.control_id}] Starting: {self.title}")

        try:
            result.state = CONNECTING
            await session.connect(self.services)
            result.state = EVALUATING
            await self.evaluate(session, result)
            if not result.is_terminal:
                result.finish(ERROR, "Control finished without a verdict")
        except Exception as e:
            logger.exception(f"[{self.control_id}] Control failed in state {result.state}")
            result.finish(ERROR, f"{type(e).__name__}: {e}")

        result.duration_seconds = round(time.time() - started, 2)
        logger.info(
            f"[{self.control_id}] {result.status} in {result.duration_seconds}s"
        )
        return result

    @abstractmethod
    async def evaluate(self, session, result: ControlResult):
        """Query the tenant and finish ``result`` with a terminal status."""
        raise NotImplementedError

    @staticmethod
    def verdict(result: ControlResult, failures: list[str], passed: str) -> ControlResult:
        """PASS with ``passed`` when there are no failures, else FAIL listing them."""
        if failures:
            return result.finish(FAIL, *failures)
        return result.finish(PASS, passed)


class ManualControl(BaseControl):
    """A control with no programmatic API; always reported as MANUAL."""

    services = ()
    instructions: str = ""

    async def evaluate(self, session, result: ControlResult):
        result.finish(MANUAL, self.instructions or "No API available; verify manually.")


class GraphSettingsControl(BaseControl):
    """Compare a single Graph settings object against fixed expectations."""

    endpoint: str = ""
    beta: bool = False
    expectations: tuple[Expect, ...] = ()

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        data = await graph.get(self.endpoint, beta=self.beta)
        if data.get("_not_found"):
            return result.finish(FAIL, f"Settings object '{self.endpoint}' not found")
        self.verdict(
            result,
            compare_fields(data, self.expectations),
            f"All {len(self.expectations)} settings of '{self.endpoint}' are compliant",
        )


class ExchangePolicyControl(BaseControl):
    """
    Compare Exchange Online configuration objects against fixed expectations.

    ``scope`` selects which objects emitted by ``cmdlet`` are evaluated:
      - "single":  the first object (organisation-wide configuration)
      - "default": the default policy
      - "all":     every object
    No selected object is a FAIL: the required configuration is absent.
    """

    services = (EXCHANGE,)
    cmdlet: str = ""
    parameters: dict = {}
    scope: str = "default"
    expectations: tuple[Expect, ...] = ()

    async def select_policies(self, exchange) -> list[dict]:
        objects = await exchange.invoke(self.cmdlet, dict(self.parameters))
        if self.scope == "single":
            return objects[:1]
        if self.scope == "default":
            return [o for o in objects if is_default_policy(o)][:1]
        return objects

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        policies = await self.select_policies(exchange)
        if not policies:
            return result.finish(FAIL, f"No applicable object returned by {self.cmdlet}")

        failures = []
        for policy in policies:
            label = object_label(policy)
            failures.extend(f"{label}: {m}" for m in compare_fields(policy, self.expectations))
        labels = ", ".join(object_label(p) for p in policies)
        self.verdict(result, failures, f"{labels}: all {len(self.expectations)} settings compliant")


class RulePolicyControl(ExchangePolicyControl):
    """
    Evaluate the policy bound to the effective rule (see select_effective_rule).
    With ``fallback_to_default`` the default policy is used when no rule is
    enabled, matching services whose default policy applies to everyone.
    """

    rule_cmdlet: str = ""
    rule_policy_field: str = ""
    fallback_to_default: bool = False

    async def select_policies(self, exchange) -> list[dict]:
        rules = await exchange.invoke(self.rule_cmdlet)
        rule = select_effective_rule(rules)
        policies = await exchange.invoke(self.cmdlet)

        if rule is None:
            logger.info(f"[{self.control_id}] No enabled rule from {self.rule_cmdlet}")
            if self.fallback_to_default:
                return [p for p in policies if is_default_policy(p)][:1]
            return []

        name = str(rule.get(self.rule_policy_field) or "").lower()
        logger.info(
            f"[{self.control_id}] Effective rule {object_label(rule)} "
            f"(priority {rule.get('Priority')}) -> policy {name}"
        )
        return [
            p for p in policies
            if name in (str(p.get("Identity") or "").lower(), str(p.get("Name") or "").lower())
        ][:1]
