# backend/routes/invoice.py
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db
from models.users import User
from schemas.invoice import InvoiceOut, InvoicePdfOut, InvoicesPage
from services.invoicing import InvoiceGenerator
from utils.audit import write_log
from utils.pdf import pdf_filename
from utils.storage import LocalBlobStore, get_blob_store
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/invoices", tags=["Invoices"])


# Paginated invoices visible to the current user
@router.get("", response_model=InvoicesPage)
def list_invoices(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    order_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = InvoiceGenerator(db).list_invoices(
        current_user, status=status, order_id=order_id, page=page, page_size=page_size,
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return InvoiceGenerator(db).get_invoice(current_user, invoice_id)


# Render the PDF into the blob store and record its URL
@router.post("/{invoice_id}/pdf", response_model=InvoicePdfOut)
def generate_invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    store: LocalBlobStore = Depends(get_blob_store),
):
    invoice = InvoiceGenerator(db).render_pdf(current_user, invoice_id, store)
    return InvoicePdfOut(invoice_id=invoice.id, pdf_url=invoice.pdf_url)


# Download invoice PDF; a missing file is rendered only for admins and the invoicing vendor
@router.get("/{invoice_id}/download")
def download_invoice_pdf(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    store: LocalBlobStore = Depends(get_blob_store),
):
    service = InvoiceGenerator(db)
    invoice = service.get_invoice(current_user, invoice_id)
    path = store.resolve(invoice.pdf_url) if invoice.pdf_url else None
    if path is None or not path.exists():
        invoice = service.render_pdf(current_user, invoice_id, store)
        path = store.resolve(invoice.pdf_url)
    if path is None or not path.exists():
        raise HTTPException(status_code=404, detail="Invoice PDF not available")

    write_log(
        db, user_id=current_user.id, action="INVOICE_PDF_DOWNLOAD", resource="invoices", status="SUCCESS",
        ip=request.client.host if request.client else None, order_id=invoice.order_id,
        meta={"invoice_id": invoice.id},
    )
    return FileResponse(path=str(path), media_type="application/pdf", filename=pdf_filename(invoice))
