"""Server-Sent Events helpers."""

from __future__ import annotations

import json
from typing import Any, Optional


def format_sse(data: Any, event: Optional[str] = None) -> str:
    """Format a payload as an SSE message."""
    if not isinstance(data, str):
        data = json.dumps(data, default=str)

    lines = []
    if event:
        lines.append(f'event: {event}')
    for line in data.splitlines() or ['']:
        lines.append(f'data: {line}')
    return '\n'.join(lines) + '\n\n'
