"""
Organization Filter Utility
Shared helpers for organization-scoped Supabase reads
"""
from typing import Optional, Any, Dict


def apply_org_filter(query: Any, organization_id: Optional[str], column: str = "organization_id") -> Any:
    """
    Scope a Supabase query to one organization.

    Args:
        query: Supabase query builder (from supabase.table(...).select(...))
        organization_id: Owning organization, or None for an unscoped read
        column: Name of the organization column

    Returns:
        Query with the organization filter applied

    Usage:
        query = supabase.table("leads").select("*").eq("id", lead_id)
        response = apply_org_filter(query, task.organization_id).limit(1).execute()
    """
    if organization_id:
        return query.eq(column, organization_id)
    return query


def fetch_one(
    supabase: Any,
    table: str,
    record_id: str,
    organization_id: Optional[str] = None,
    columns: str = "*",
    org_column: str = "organization_id"
) -> Optional[Dict[str, Any]]:
    """
    Read a single row by id, optionally restricted to an organization.

    Returns None when the row is missing or belongs to another organization.
    """
    query = supabase.table(table).select(columns).eq("id", record_id)
    response = apply_org_filter(query, organization_id, org_column).limit(1).execute()
    return response.data[0] if response.data else None
