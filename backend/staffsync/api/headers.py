from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import Response


def set_warning_header(response: Response, warnings: list[str]) -> None:
    """Surface membership warnings as an RFC 7234 Warning header (code 199)."""
    if warnings:
        response.headers["Warning"] = ", ".join(f'199 - "{w}"' for w in warnings)
