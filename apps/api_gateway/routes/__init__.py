from fastapi import APIRouter

from . import account, admin, auth, catalog, orders, promo

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(account.router, prefix="/account", tags=["account"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])
router.include_router(promo.router, prefix="/promo", tags=["promo"])
router.include_router(catalog.router, prefix="/categories", tags=["catalog"])
router.include_router(admin.auth_router, prefix="/admin", tags=["admin"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])

__all__ = ["router"]
