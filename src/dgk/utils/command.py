"""Command templating shared by scanner gates and command mutators."""

from __future__ import annotations

from string import Template
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from dgk.core.models import ChangeDescriptor


def render_command(command: Sequence[str], change: ChangeDescriptor) -> list[str]:
    """Substitute ``$source``, ``$environment``, ``$fingerprint`` and ``$revision``.

    Uses :class:`string.Template` so unknown placeholders are left as-is.
    Arguments are substituted one by one; nothing is ever joined into a
    shell string.
    """
    variables = {
        "source": str(change.source) if change.source is not None else "",
        "environment": change.environment,
        "fingerprint": change.fingerprint,
        "revision": change.revision or "",
    }
    return [Template(arg).safe_substitute(variables) for arg in command]
