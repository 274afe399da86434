"""Attribute filters for topic subscriptions.

A filter is plain data: a list of constraints, each naming an attribute and
the set of values it may take. An event matches when every constrained
attribute is present with an allowed value. A filter with no constraints
matches everything.

Example:
    >>> f = SubscriptionFilter.where(metadata_type=["Caption", "Date"])
    >>> f.matches({"metadata_type": "Caption"})
    True
    >>> f.matches({})
    False
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


def _reject_bare_string(attribute: str, values: object) -> None:
    # A str is iterable, so it would otherwise become a set of single characters
    if isinstance(values, (str, bytes)):
        raise TypeError(
            f"Allowed values for '{attribute}' must be a collection of strings, "
            f"got {type(values).__name__} {values!r}; wrap it in a list"
        )


@dataclass(frozen=True)
class FilterConstraint:
    attribute: str
    allowed_values: frozenset[str]

    def __post_init__(self) -> None:
        if not self.attribute:
            raise ValueError("Filter constraint attribute name must not be empty")
        _reject_bare_string(self.attribute, self.allowed_values)
        object.__setattr__(self, "allowed_values", frozenset(self.allowed_values))
        if not self.allowed_values:
            raise ValueError(f"Filter constraint on '{self.attribute}' allows no values")

    def satisfied_by(self, attributes: Mapping[str, str]) -> bool:
        value = attributes.get(self.attribute)
        return value is not None and value in self.allowed_values


@dataclass(frozen=True)
class SubscriptionFilter:
    constraints: tuple[FilterConstraint, ...] = field(default_factory=tuple)

    @classmethod
    def where(cls, **allowed: Iterable[str]) -> "SubscriptionFilter":
        """Build a filter from ``attribute=[values...]`` keyword arguments.

        Raises:
            TypeError: If a value set is a bare string rather than a collection
        """
        constraints = []
        for name, values in allowed.items():
            _reject_bare_string(name, values)
            constraints.append(FilterConstraint(name, frozenset(values)))
        return cls(tuple(constraints))

    @classmethod
    def match_all(cls) -> "SubscriptionFilter":
        return cls()

    def matches(self, attributes: Mapping[str, str]) -> bool:
        return all(c.satisfied_by(attributes) for c in self.constraints)

    def describe(self) -> dict[str, list[str]]:
        """Constraint summary suitable for logging."""
        return {c.attribute: sorted(c.allowed_values) for c in self.constraints}


def matches(subscription_filter: SubscriptionFilter, attributes: Mapping[str, str]) -> bool:
    return subscription_filter.matches(attributes)
