from fastapi import Depends, HTTPException, status

from school_fees.auth.dependencies import resolve_tenant
from school_fees.auth.schemas import TenantContext

FEE_ADMIN_ROLES = ("SUPER_ADMIN", "ADMIN", "ACCOUNTANT")


async def require_fee_admin(tenant: TenantContext = Depends(resolve_tenant)) -> TenantContext:
    """Require a role allowed to mutate fees (catalog, generation, payments, adjustments)."""
    if tenant.role.upper() not in FEE_ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return tenant
