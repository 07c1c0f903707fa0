"""Runtime settings consumed by the approval services."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ADMINISTRATOR_ROLE = "System Admin"


@dataclass(frozen=True)
class ApprovalSettings:
    """
    Kernel-side settings.

    Built from configuration by ``property_config.bridges.build_settings``;
    the kernel never reads configuration files itself.
    """

    administrator_role: str | None = DEFAULT_ADMINISTRATOR_ROLE
    request_timeout_hours: int | None = None
