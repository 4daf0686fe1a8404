import uuid
from datetime import datetime
from typing import Annotated, Callable, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from config import MAX_UPLOAD_BYTES, MAX_UPLOAD_SIZE_MB
from db import SessionDep
from errors import ValidationError
from images import ImageStoreDep, LocalImageStore
from lifecycle import ListingEngine
from models import Product, utcnow
from schemas import RequestCreate

router = APIRouter(tags=["products"])


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_listing_engine(
    session: SessionDep,
    images: ImageStoreDep,
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ListingEngine:
    return ListingEngine(session, images, clock=clock)


ListingEngineDep = Annotated[ListingEngine, Depends(get_listing_engine)]


def _store_upload(images: LocalImageStore, upload: Optional[UploadFile]) -> Optional[str]:
    """Write an uploaded image to the store and return its reference."""
    if upload is None or not upload.filename:
        return None

    if upload.content_type and not upload.content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed!")

    raw_bytes = upload.file.read()

    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"Image exceeds {MAX_UPLOAD_SIZE_MB}MB limit")

    return images.save(raw_bytes, upload.filename)


def _form_fields(**fields: Optional[str]) -> dict:
    # Fields the client did not send are left out so validation can name them
    return {name: value for name, value in fields.items() if value is not None}


@router.get("/", response_model=List[Product])
def list_available(engine: ListingEngineDep):
    """
    Listings recipients can browse and request, newest first.
    """
    return engine.list_available()


@router.post("/", response_model=Product, status_code=201)
def submit_product(
    engine: ListingEngineDep,
    images: ImageStoreDep,
    productName: Optional[str] = Form(default=None),
    contact: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    country: Optional[str] = Form(default=None),
    city: Optional[str] = Form(default=None),
    district: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    donorId: Optional[str] = Form(default=None),
    productImage: Optional[UploadFile] = File(default=None),
):
    """
    Submit a donation. It waits for admin approval before anyone sees it.
    """
    data = _form_fields(
        name=productName,
        contact=contact,
        email=email,
        country=country,
        city=city,
        district=district,
        description=description,
    )
    image = _store_upload(images, productImage)
    return engine.submit(data, image, donorId or "")


@router.get("/donor/{donor_id}", response_model=List[Product])
def list_donor_products(donor_id: str, engine: ListingEngineDep):
    return engine.list_by_donor(donor_id)


@router.get("/{product_id}", response_model=Product)
def get_product(product_id: uuid.UUID, engine: ListingEngineDep):
    return engine.get_product(product_id)


@router.put("/{product_id}", response_model=Product)
def edit_product(
    product_id: uuid.UUID,
    engine: ListingEngineDep,
    images: ImageStoreDep,
    donorId: Optional[str] = Form(default=None),
    productName: Optional[str] = Form(default=None),
    contact: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    country: Optional[str] = Form(default=None),
    city: Optional[str] = Form(default=None),
    district: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    productImage: Optional[UploadFile] = File(default=None),
):
    """
    Edit a listing you donated. Approved or rejected listings go back to Pending.
    """
    data = _form_fields(
        name=productName,
        contact=contact,
        email=email,
        country=country,
        city=city,
        district=district,
        description=description,
    )
    image = _store_upload(images, productImage)
    return engine.edit_and_resubmit(product_id, donorId or "", data, image)


@router.post("/{product_id}/request", response_model=Product)
def request_product(product_id: uuid.UUID, request_data: RequestCreate, engine: ListingEngineDep):
    """
    Claim an available listing. The donor gets a notification to accept or decline.
    """
    return engine.request(product_id, request_data.requester_id)
