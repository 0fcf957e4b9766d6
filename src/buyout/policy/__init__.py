"""Protocol parameter loading."""

from buyout.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
