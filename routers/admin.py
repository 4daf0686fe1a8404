import uuid
from dataclasses import asdict
from datetime import timedelta
from typing import Annotated, List, Literal, Optional

from fastapi import APIRouter, Depends

from config import REQUEST_GRACE_MINUTES
from db import new_session
from images import ImageStoreDep
from models import Product
from schemas import HiddenCount, SweepSummary
from sweeper import Sweeper
from .auth import AdminDep
from .products import ListingEngineDep

router = APIRouter(tags=["admin"])


def get_sweeper(images: ImageStoreDep) -> Sweeper:
    return Sweeper(
        new_session,
        images,
        request_grace=timedelta(minutes=REQUEST_GRACE_MINUTES),
    )


SweeperDep = Annotated[Sweeper, Depends(get_sweeper)]


@router.get("/products", response_model=List[Product])
def list_products_for_admin(
    engine: ListingEngineDep,
    admin: AdminDep,
    status: Optional[Literal["Pending", "Urgent"]] = None,
):
    """
    Moderation views. Without a status: every approved listing.
    Listings hidden from admin never show up here.
    """
    if status == "Pending":
        return engine.list_pending()
    if status == "Urgent":
        return engine.list_urgent()
    return engine.list_all()


@router.patch("/products/{product_id}/approve", response_model=Product)
def approve_product(product_id: uuid.UUID, engine: ListingEngineDep, admin: AdminDep):
    return engine.approve(product_id)


@router.delete("/products/{product_id}", response_model=Product)
def reject_product(product_id: uuid.UUID, engine: ListingEngineDep, admin: AdminDep):
    """
    Mark a listing Rejected. The record is kept.
    """
    return engine.reject(product_id)


@router.put("/products/hide-rejected", response_model=HiddenCount)
def hide_rejected_products(engine: ListingEngineDep, admin: AdminDep):
    return HiddenCount(hidden=engine.hide_all_rejected())


@router.put("/products/{product_id}/hide", response_model=Product)
def hide_product(product_id: uuid.UUID, engine: ListingEngineDep, admin: AdminDep):
    return engine.hide_from_admin(product_id)


@router.post("/sweeps/short", response_model=SweepSummary)
def run_short_sweep(sweeper: SweeperDep, admin: AdminDep):
    """
    Entry point for an external scheduler; the in-process one does the same.
    """
    return SweepSummary(**asdict(sweeper.run_short_sweep()))


@router.post("/sweeps/long", response_model=SweepSummary)
def run_long_sweep(sweeper: SweeperDep, admin: AdminDep):
    return SweepSummary(**asdict(sweeper.run_long_sweep()))
