"""
Poster catalog: listing, detail and admin maintenance.

Prices live on size variants (``postersize``), so the price-range filter
is applied in Python over each poster's variant prices.
"""
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from database import create_document, db, insert_documents, oid, serialize
from errors import PosterNotFound, UpstreamFailure, ValidationError
from schemas import Poster, PosterSize

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("created_at", "updated_at", "title", "artist", "views_count")
SEARCH_FIELDS = ("title", "artist", "description")


def slugify(title: str) -> str:
    slug = re.sub(r"\s+", "-", title.lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


class PosterQuery(BaseModel):
    category: Optional[str] = None
    featured: Optional[bool] = None
    search: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def has_price_filter(self) -> bool:
        return self.min_price is not None or self.max_price is not None

    def to_filter(self) -> Dict[str, Any]:
        filt: Dict[str, Any] = {"status": "active"}
        if self.category:
            filt["category_id"] = resolve_category(self.category)
        if self.featured:
            filt["is_featured"] = True
        if self.search:
            pattern = re.escape(self.search)
            filt["$or"] = [{f: {"$regex": pattern, "$options": "i"}} for f in SEARCH_FIELDS]
        return filt

    def sort_keys(self):
        if self.sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {self.sort_by}")
        direction = 1 if self.sort_order == "asc" else -1
        return [(self.sort_by, direction), ("_id", direction)]


def resolve_category(value: str) -> str:
    """Accept a category id or slug and return the id."""
    if ObjectId.is_valid(value):
        return value
    cat = db["category"].find_one({"slug": value})
    return str(cat["_id"]) if cat else value


def price_bounds(prices: Iterable[float]):
    prices = list(prices)
    if not prices:
        return None
    return min(prices), max(prices)


def matches_price_range(prices: Iterable[float], min_price: Optional[float] = None, max_price: Optional[float] = None) -> bool:
    bounds = price_bounds(prices)
    if bounds is None:
        return False
    low, high = bounds
    if min_price is not None and max_price is not None:
        # the whole price interval must sit inside the requested range
        return low >= min_price and high <= max_price
    if min_price is not None:
        return high >= min_price
    if max_price is not None:
        return low <= max_price
    return True


def attach_relations(posters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize posters with their sizes and category embedded."""
    if not posters:
        return []
    ids = [str(p["_id"]) for p in posters]
    sizes: Dict[str, list] = {pid: [] for pid in ids}
    for s in db["postersize"].find({"poster_id": {"$in": ids}}).sort("display_order", 1):
        sizes[s["poster_id"]].append(serialize(s))

    cat_ids = {p.get("category_id") for p in posters if p.get("category_id")}
    cat_ids = [oid(c) for c in cat_ids if ObjectId.is_valid(c)]
    categories = {str(c["_id"]): serialize(c) for c in db["category"].find({"_id": {"$in": cat_ids}})} if cat_ids else {}

    result = []
    for p in posters:
        doc = serialize(p)
        doc["sizes"] = sizes.get(doc["id"], [])
        doc["category"] = categories.get(doc.get("category_id"))
        result.append(doc)
    return result


def list_posters(query: PosterQuery) -> Dict[str, Any]:
    filt = query.to_filter()
    sort = query.sort_keys()
    cursor = db["poster"].find(filt).sort(sort)

    if query.has_price_filter:
        # filter the full candidate set so the page count reflects the price range
        candidates = attach_relations(list(cursor))
        matched = [
            p for p in candidates
            if matches_price_range((float(s["price"]) for s in p["sizes"]), query.min_price, query.max_price)
        ]
        total = len(matched)
        data = matched[query.offset:query.offset + query.limit]
    else:
        total = db["poster"].count_documents(filt)
        data = attach_relations(list(cursor.skip(query.offset).limit(query.limit)))

    return {
        "data": data,
        "pagination": {
            "page": query.page,
            "limit": query.limit,
            "total": total,
            "totalPages": math.ceil(total / query.limit),
        },
    }


def get_poster(poster_id: str) -> Dict[str, Any]:
    """Fetch an active poster and count the view."""
    doc = db["poster"].find_one_and_update(
        {"_id": oid(poster_id), "status": "active"},
        {"$inc": {"views_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise PosterNotFound()
    return attach_relations([doc])[0]


def _check_category(category_id: Optional[str]):
    if category_id and not db["category"].find_one({"_id": oid(category_id)}):
        raise ValidationError("Category not found")


def _insert_sizes(poster_id: str, sizes: List[Dict[str, Any]]):
    docs = [PosterSize(poster_id=poster_id, **s) for s in sizes]
    insert_documents("postersize", docs)


def create_poster(data: Dict[str, Any]) -> Dict[str, Any]:
    sizes = data.pop("sizes", None) or []
    _check_category(data.get("category_id"))
    poster = Poster(slug=slugify(data["title"]), **data)
    poster_id = create_document("poster", poster)
    try:
        _insert_sizes(poster_id, sizes)
    except Exception:
        logger.exception("Size insert failed for poster %s, rolling back", poster_id)
        db["poster"].delete_one({"_id": oid(poster_id)})
        raise UpstreamFailure("Failed to save poster sizes")
    logger.info("Poster %s created with %d sizes", poster_id, len(sizes))
    return attach_relations([db["poster"].find_one({"_id": oid(poster_id)})])[0]


def update_poster(poster_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    _id = oid(poster_id)
    sizes = changes.pop("sizes", None)
    update_doc = {k: v for k, v in changes.items() if v is not None}
    if "title" in update_doc:
        update_doc["slug"] = slugify(update_doc["title"])
    if "category_id" in update_doc:
        _check_category(update_doc["category_id"])

    update: Dict[str, Any] = {"$currentDate": {"updated_at": True}}
    if update_doc:
        update["$set"] = update_doc
    res = db["poster"].update_one({"_id": _id}, update)
    if res.matched_count == 0:
        raise PosterNotFound()

    if sizes is not None:
        # sizes are replaced wholesale, not diffed
        db["postersize"].delete_many({"poster_id": poster_id})
        _insert_sizes(poster_id, sizes)
    logger.info("Poster %s updated", poster_id)
    return attach_relations([db["poster"].find_one({"_id": _id})])[0]


def delete_poster(poster_id: str) -> None:
    _id = oid(poster_id)
    res = db["poster"].delete_one({"_id": _id})
    if res.deleted_count == 0:
        raise PosterNotFound()
    db["postersize"].delete_many({"poster_id": poster_id})
    logger.info("Poster %s deleted", poster_id)
