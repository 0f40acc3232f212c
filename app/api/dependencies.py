"""Shared FastAPI dependencies."""

from fastapi import Header


def get_tenant_id(
    x_tenant_id: str = Header(
        ...,
        alias="X-Tenant-Id",
        min_length=1,
        max_length=100,
        description="Owner of the settlements being read or written",
    ),
) -> str:
    """Tenant identifier taken from the ``X-Tenant-Id`` header."""
    return x_tenant_id.strip()
