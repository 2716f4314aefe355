"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, days_from, utc_date_key
from utils.tenant_context import (
    get_current_company_id,
    get_current_actor_id,
    set_tenant,
    clear_tenant,
    tenant_context,
)
