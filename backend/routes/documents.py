"""
Document Routes - catalog, token-gated download links and redemption
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
import logging

from pymongo.errors import PyMongoError

from database import get_db
from utils.auth import get_current_user
from token_wallet.guard import EntitlementGate, DownloadDeniedError
from token_wallet.models import DownloadRequest

logger = logging.getLogger(__name__)

documents_router = APIRouter(tags=["Documents"])
download_router = APIRouter(tags=["Downloads"])

ACCESS_DENIED_HTML = """<!DOCTYPE html>
<html>
  <head>
    <title>Access Denied</title>
    <style>
      body {
        font-family: Arial, sans-serif;
        text-align: center;
        padding: 50px;
        background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
        color: white;
      }
      .container {
        background: white;
        color: #333;
        padding: 40px;
        border-radius: 10px;
        max-width: 500px;
        margin: 0 auto;
      }
    </style>
  </head>
  <body>
    <div class="container">
      <h1>Access Denied</h1>
      <p>This download link has expired or is invalid.</p>
      <p><a href="/">Return to homepage</a></p>
    </div>
  </body>
</html>
"""


def _gate(request: Request, db) -> EntitlementGate:
    return EntitlementGate(db, request.app.state.catalog, request.app.state.settings)


@documents_router.get("/documents")
async def list_documents(request: Request):
    """List purchasable documents"""
    documents = request.app.state.catalog.list()
    return {
        "success": True,
        "documents": [
            {
                "id": doc.id,
                "name": doc.name,
                "tokensRequired": doc.tokens_required,
                "category": doc.category,
                "year": doc.year
            }
            for doc in documents
        ]
    }


@documents_router.post("/document/download")
async def request_download(
    body: DownloadRequest,
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """Spend tokens on a document and get a one hour download link"""
    result = await _gate(request, db).unlock(user["id"], body.document_id)

    if not result.allowed:
        if result.error_code in ("DOCUMENT_NOT_FOUND", "ACCOUNT_NOT_FOUND"):
            raise HTTPException(status_code=404, detail=result.error_message)
        raise HTTPException(
            status_code=403,
            detail={
                "error": result.error_message,
                "required": result.tokens_required,
                "available": result.tokens_remaining
            }
        )

    return {
        "success": True,
        "downloadUrl": result.download_url,
        "expiresIn": result.expires_in,
        "tokensRemaining": result.tokens_remaining
    }


@documents_router.get("/user/downloads")
async def get_download_history(
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get the caller's 50 most recent downloads"""
    downloads = await _gate(request, db).get_download_history(user["id"])
    return {"success": True, "downloads": downloads}


@download_router.get("/download/{token}")
async def redeem_download(token: str, request: Request, db=Depends(get_db)):
    """Redeem a download link and redirect to the file"""
    try:
        document = await _gate(request, db).redeem(token)
    except DownloadDeniedError as e:
        logger.warning(f"Download denied: {e}")
        return HTMLResponse(content=ACCESS_DENIED_HTML, status_code=403)
    except PyMongoError as e:
        logger.error(f"Download redemption failed: {e}")
        return HTMLResponse(content=ACCESS_DENIED_HTML, status_code=403)

    return RedirectResponse(url=document.drive_url)
