import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from bson import ObjectId
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import db, create_document, get_documents
from errors import AuthError, TransientIOError
from identity import IdentityClient, TokenClaims
from observability import configure_logging, get_logger
from purchase_history import generate_order_id, total_of
from schemas import PurchaseAddRequest, WishlistAddRequest
from settings import get_settings

app = FastAPI(title="Storefront API")
logger = get_logger("server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses are always {"error": "..."}

INVALID_BODY_MESSAGES = {
    "/api/wishlist": "Invalid product data",
    "/api/purchase-history": "Invalid purchase data",
}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = "Invalid request data"
    for prefix, text in INVALID_BODY_MESSAGES.items():
        if request.url.path.startswith(prefix):
            message = text
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("database_operation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Database operation failed"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unexpected_server_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Utilities

def to_public(doc: dict):
    if not doc:
        return doc
    d = {**doc}
    oid = d.pop("_id", None)
    if "id" not in d and oid is not None:
        d["id"] = str(oid)
    d.pop("created_at", None)
    d.pop("updated_at", None)
    return d


def public_purchase(doc: dict) -> dict:
    return {k: doc.get(k) for k in ["orderId", "items", "totalAmount", "date"]}


def id_candidates(product_id: Any) -> List[Any]:
    """Stored product ids may be numeric while path parameters are strings."""
    candidates = [product_id]
    if isinstance(product_id, bool):
        return candidates
    if isinstance(product_id, int):
        candidates.append(str(product_id))
    elif isinstance(product_id, str) and product_id.isdigit():
        candidates.append(int(product_id))
    return candidates


def collection(name: str) -> Collection:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db[name]


def load_user_document(user: TokenClaims) -> dict:
    """Fetch the user's document, creating it on first contact."""
    return collection("users").find_one_and_update(
        {"_id": user.uid},
        {
            "$setOnInsert": {
                "email": user.email,
                "displayName": user.name or "",
                "wishlist": [],
                "purchaseHistory": [],
                "created_at": datetime.now(timezone.utc),
            }
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


# Auth

_identity: Optional[IdentityClient] = None


def get_identity() -> IdentityClient:
    global _identity
    if _identity is None:
        settings = get_settings()
        api_key = settings.identity_api_key.get_secret_value() if settings.identity_api_key else ""
        _identity = IdentityClient(
            api_key,
            http_client=httpx.Client(timeout=settings.request_timeout_seconds),
            base_url=settings.identity_base_url,
            token_url=settings.token_base_url,
        )
    return _identity


def get_current_user(
    authorization: Optional[str] = Header(None),
    identity: IdentityClient = Depends(get_identity),
) -> TokenClaims:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized - No token provided")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized - No token provided")
    try:
        return identity.verify_id_token(token)
    except AuthError as exc:
        logger.info("token_rejected", code=exc.code)
        raise HTTPException(status_code=401, detail="Unauthorized - Invalid token")
    except TransientIOError as exc:
        logger.error("token_verification_unavailable", error=str(exc))
        raise HTTPException(status_code=500, detail="Failed to verify token")


@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}


@app.get("/api/health")
def health():
    response: Dict[str, Any] = {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "Not Configured",
    }
    if db is not None:
        try:
            db.command("ping")
            response["database"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"Error: {str(e)[:50]}"
    return response


# Catalog

@app.get("/api/products")
def list_products():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return {"products": [to_public(p) for p in get_documents("products")]}


@app.get("/api/products/sale")
def list_discounted_products():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    products = get_documents("products", {"oldPrice": {"$gt": 0}})
    return {"products": [to_public(p) for p in products]}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    query: Dict[str, Any] = {"id": {"$in": id_candidates(product_id)}}
    if ObjectId.is_valid(product_id):
        query = {"$or": [query, {"_id": ObjectId(product_id)}]}
    product = collection("products").find_one(query)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": to_public(product)}


# Wishlist

@app.get("/api/wishlist")
def get_wishlist(user: TokenClaims = Depends(get_current_user)):
    doc = load_user_document(user)
    wishlist = doc.get("wishlist") if doc else None
    return {"wishlist": wishlist if isinstance(wishlist, list) else []}


@app.post("/api/wishlist/add", status_code=201)
def add_to_wishlist(payload: WishlistAddRequest, response: Response, user: TokenClaims = Depends(get_current_user)):
    product = payload.product
    if not product or product.get("id") in (None, ""):
        raise HTTPException(status_code=400, detail="Invalid product data")

    load_user_document(user)
    # Push only while no entry with this id exists, so concurrent adds stay idempotent
    result = collection("users").update_one(
        {"_id": user.uid, "wishlist.id": {"$nin": id_candidates(product["id"])}},
        {"$push": {"wishlist": product}},
    )
    if result.modified_count == 0:
        response.status_code = 200
        return {"message": "Product already in wishlist", "product": product}

    logger.info("wishlist_item_added", uid=user.uid, product_id=str(product["id"]))
    return {"message": "Product added to wishlist", "product": product}


@app.delete("/api/wishlist/remove/{product_id}")
def remove_from_wishlist(product_id: str, user: TokenClaims = Depends(get_current_user)):
    if not product_id.strip():
        raise HTTPException(status_code=400, detail="Product ID is required")

    users = collection("users")
    if not users.find_one({"_id": user.uid}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="User not found")

    candidates = id_candidates(product_id)
    result = users.update_one(
        {"_id": user.uid, "wishlist.id": {"$in": candidates}},
        {"$pull": {"wishlist": {"id": {"$in": candidates}}}},
    )
    if result.modified_count == 0:
        raise HTTPException(status_code=404, detail="Product not found in wishlist")

    logger.info("wishlist_item_removed", uid=user.uid, product_id=product_id)
    return {"message": "Product removed from wishlist", "productId": product_id}


# Purchase history

@app.get("/api/purchase-history")
def get_purchase_history(user: TokenClaims = Depends(get_current_user)):
    doc = load_user_document(user)
    history = doc.get("purchaseHistory") if doc else None
    return {"purchaseHistory": history if isinstance(history, list) else []}


@app.post("/api/purchase-history/add")
def add_purchase(payload: PurchaseAddRequest, user: TokenClaims = Depends(get_current_user)):
    record = {
        "orderId": payload.order_id or generate_order_id(),
        "items": [item.model_dump(exclude_none=True) for item in payload.items],
        "totalAmount": payload.total_amount if payload.total_amount is not None else total_of(payload.items),
        "date": payload.date or datetime.now(timezone.utc),
    }

    load_user_document(user)
    # Set-union append: never rewrite the whole history array
    collection("users").update_one({"_id": user.uid}, {"$addToSet": {"purchaseHistory": record}})
    if not collection("purchases").find_one({"userId": user.uid, "orderId": record["orderId"]}, {"_id": 1}):
        create_document("purchases", {"userId": user.uid, **record})

    logger.info("purchase_recorded", uid=user.uid, order_id=record["orderId"])
    return {"success": True, "message": "Purchase added to history", "orderId": record["orderId"]}


@app.get("/api/purchase-history/{order_id}")
def get_purchase(order_id: str, user: TokenClaims = Depends(get_current_user)):
    if not order_id.strip():
        raise HTTPException(status_code=400, detail="Order ID is required")
    purchase = collection("purchases").find_one({"userId": user.uid, "orderId": order_id})
    if not purchase:
        raise HTTPException(status_code=404, detail="Purchase not found")
    return {"purchase": public_purchase(purchase)}


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_format=settings.log_json)
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
