"""Rate limit policies and the registry resolving them by name."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Mapping

from app.core.errors import UnknownPolicyError, ValidationAppError
from app.schemas.policy import RESERVED_NAMESPACES, PolicyConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Policy:
    """Immutable rate limit parameters identified by ``name``.

    Attributes:
        name: Policy name used by routes and operators.
        budget: Points allowed per window.
        window_seconds: Window length in seconds.
        block_seconds: Block duration once the budget is exceeded (0 = one window).
        key_namespace: Namespace of the counter keys.
        smooth: Spread the budget evenly across the window.
    """

    name: str
    budget: int
    window_seconds: int
    block_seconds: int
    key_namespace: str
    smooth: bool = False

    @property
    def effective_block_seconds(self) -> int:
        return self.block_seconds or self.window_seconds

    @property
    def shape(self) -> tuple[str, int, int, int, bool]:
        """Parameters that identify the limiter serving this policy."""
        return (
            self.key_namespace,
            self.budget,
            self.window_seconds,
            self.block_seconds,
            self.smooth,
        )

    @classmethod
    def from_config(cls, config: PolicyConfig, name: str | None = None) -> "Policy":
        """Build a policy from validated configuration.

        Named policies default their namespace to the name. Ad hoc policies
        (``name=None``) must carry an explicit namespace, otherwise two unrelated
        routes would silently share counters.

        Raises:
            ValidationAppError: If an ad hoc policy has no key namespace.
        """
        namespace = config.key_namespace or name
        if not namespace:
            raise ValidationAppError(
                code="rate_limit_policy_missing_namespace",
                message="Ad hoc rate limit policies require a key_namespace",
            )
        if namespace in RESERVED_NAMESPACES:
            raise ValidationAppError(
                code="rate_limit_policy_reserved_namespace",
                message=f"Rate limit key namespace '{namespace}' is reserved",
            )
        return cls(
            name=name or f"custom:{namespace}",
            budget=config.budget,
            window_seconds=config.window_seconds,
            block_seconds=config.block_seconds,
            key_namespace=namespace,
            smooth=config.smooth,
        )


DEFAULT_POLICIES: dict[str, PolicyConfig] = {
    "global": PolicyConfig(budget=10, window_seconds=1, key_namespace="middleware"),
    "strict": PolicyConfig(budget=5, window_seconds=60, block_seconds=300),
    "login": PolicyConfig(budget=5, window_seconds=60, block_seconds=300),
    "register": PolicyConfig(budget=3, window_seconds=3600, block_seconds=3600),
    "api": PolicyConfig(budget=100, window_seconds=60),
    "upload": PolicyConfig(budget=10, window_seconds=60, block_seconds=60),
    "admin": PolicyConfig(budget=30, window_seconds=60),
    "email": PolicyConfig(budget=1, window_seconds=600),
}


class PolicyRegistry:
    """Read-only table of named policies, loaded once at startup."""

    def __init__(self, configs: Mapping[str, PolicyConfig]) -> None:
        self._policies: dict[str, Policy] = {
            name: Policy.from_config(config, name) for name, config in configs.items()
        }

    @classmethod
    def with_defaults(
        cls, overrides: Mapping[str, PolicyConfig] | None = None
    ) -> "PolicyRegistry":
        """Built-in policies merged with deployment overrides/additions."""
        configs = dict(DEFAULT_POLICIES)
        if overrides:
            configs.update(overrides)
            logger.info(
                "rate_limit.policies_overridden",
                extra={"policies": sorted(overrides)},
            )
        return cls(configs)

    def resolve(self, name: str) -> Policy:
        """Return the policy registered under ``name``.

        Raises:
            UnknownPolicyError: If no policy has that name.
        """
        try:
            return self._policies[name]
        except KeyError:
            raise UnknownPolicyError(name) from None

    def coerce(self, policy: "str | PolicyConfig | Policy") -> Policy:
        """Resolve a policy name, ad hoc config, or policy to a ``Policy``."""
        if isinstance(policy, Policy):
            return policy
        if isinstance(policy, PolicyConfig):
            return Policy.from_config(policy)
        return self.resolve(policy)

    def names(self) -> list[str]:
        return sorted(self._policies)

    def __iter__(self) -> Iterator[Policy]:
        return iter(self._policies[name] for name in self.names())

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __len__(self) -> int:
        return len(self._policies)
