"""
Document store on SQLAlchemy — keyed JSON documents with upsert semantics.

Tables (one per collection, all share the same shape):
  - articles: keyed by `link`
  - synthesized_events: keyed by `event_key`
  - opportunities: keyed by `reach_out_to`
  - subscribers: keyed by `email`
  - sources: keyed by `name`

Each row holds the JSON body plus its natural key in an indexed, unique
column, so re-ingesting the same key updates instead of duplicating.
Update operators ($set, $setOnInsert, $push/$each/$position, $max, $inc)
and filter operators ($in, $ne, $exists, $gt/$gte/$lt/$lte) are evaluated
in Python against the decoded body.
"""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .errors import StoreError
from .schemas.news import new_id, utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


# ── Models ───────────────────────────────────────────────────────────────────

class _DocumentColumns:
    id = Column(Integer, primary_key=True, autoincrement=True)
    doc_id = Column(String(64), nullable=False, unique=True, index=True)
    natural_key = Column(String(2048), nullable=False, unique=True, index=True)
    body = Column(Text, nullable=False)  # JSON document
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ArticleModel(_DocumentColumns, Base):
    __tablename__ = "articles"


class EventModel(_DocumentColumns, Base):
    __tablename__ = "synthesized_events"


class OpportunityModel(_DocumentColumns, Base):
    __tablename__ = "opportunities"


class SubscriberModel(_DocumentColumns, Base):
    __tablename__ = "subscribers"


class SourceModel(_DocumentColumns, Base):
    __tablename__ = "sources"


# collection name → (model, natural key field)
COLLECTIONS: Dict[str, Tuple[type, str]] = {
    "articles": (ArticleModel, "link"),
    "events": (EventModel, "event_key"),
    "opportunities": (OpportunityModel, "reach_out_to"),
    "subscribers": (SubscriberModel, "email"),
    "sources": (SourceModel, "name"),
}

Filter = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


# ── Write results ────────────────────────────────────────────────────────────

@dataclass
class UpdateOne:
    """One keyed upsert inside a bulk write."""
    filter: Filter
    update: Dict[str, Any]
    upsert: bool = True


@dataclass
class UpdateResult:
    matched: int = 0
    modified: int = 0
    upserted_id: Optional[str] = None


@dataclass
class BulkWriteResult:
    matched: int = 0
    modified: int = 0
    upserted: int = 0
    upserted_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ── JSON helpers ─────────────────────────────────────────────────────────────

def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _normalize(value: Any) -> Any:
    """Round-trip through JSON so in-memory docs look exactly like stored ones."""
    return json.loads(json.dumps(value, default=_json_default))


def _dumps(doc: Dict[str, Any]) -> str:
    return json.dumps(doc, default=_json_default, ensure_ascii=False)


# ── Operator evaluation ──────────────────────────────────────────────────────

_MISSING = object()


def _compare(doc_value: Any, op: str, operand: Any) -> bool:
    if doc_value is _MISSING or doc_value is None:
        return False
    try:
        if op == "$gt":
            return doc_value > operand
        if op == "$gte":
            return doc_value >= operand
        if op == "$lt":
            return doc_value < operand
        return doc_value <= operand
    except TypeError:
        return False


def _equals(doc_value: Any, expected: Any) -> bool:
    if isinstance(doc_value, list) and not isinstance(expected, list):
        return expected in doc_value
    if doc_value is _MISSING:
        return expected is None
    return doc_value == expected


def _match_condition(doc_value: Any, condition: Any) -> bool:
    if not (isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition)):
        return _equals(doc_value, _normalize(condition))

    for op, operand in condition.items():
        operand = _normalize(operand)
        if op == "$eq":
            ok = _equals(doc_value, operand)
        elif op == "$ne":
            ok = not _equals(doc_value, operand)
        elif op == "$in":
            ok = any(_equals(doc_value, v) for v in operand)
        elif op == "$nin":
            ok = not any(_equals(doc_value, v) for v in operand)
        elif op == "$exists":
            present = doc_value is not _MISSING
            ok = present if operand else not present
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(doc_value, op, operand)
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


def matches(doc: Dict[str, Any], flt: Optional[Filter]) -> bool:
    """Evaluate a Mongo-style filter against one decoded document."""
    for key, condition in (flt or {}).items():
        if not _match_condition(doc.get(key, _MISSING), condition):
            return False
    return True


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool) -> Dict[str, Any]:
    """Apply update operators to a document in place and return it."""
    if not update or not all(k.startswith("$") for k in update):
        raise ValueError("Update must use operators ($set, $push, ...)")

    for op, fields in update.items():
        fields = _normalize(fields)
        if op == "$set":
            doc.update(fields)
        elif op == "$setOnInsert":
            if inserting:
                doc.update(fields)
        elif op == "$push":
            for key, value in fields.items():
                items = doc.get(key) or []
                if not isinstance(items, list):
                    raise ValueError(f"$push target '{key}' is not a list")
                if isinstance(value, dict) and "$each" in value:
                    new_items = list(value["$each"])
                    position = value.get("$position")
                    if position is None:
                        items = items + new_items
                    else:
                        items = items[:position] + new_items + items[position:]
                else:
                    items = items + [value]
                doc[key] = items
        elif op == "$max":
            for key, value in fields.items():
                current = doc.get(key)
                if current is None or value > current:
                    doc[key] = value
        elif op == "$inc":
            for key, value in fields.items():
                doc[key] = (doc.get(key) or 0) + value
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


def _project(doc: Dict[str, Any], projection: Optional[Iterable[str]]) -> Dict[str, Any]:
    if not projection:
        return doc
    wanted = set(projection) | {"id"}
    return {k: v for k, v in doc.items() if k in wanted}


def _sort(docs: List[Dict[str, Any]], sort: Optional[SortSpec]) -> List[Dict[str, Any]]:
    # Stable sorts applied from the least to the most significant key
    for key, direction in reversed(list(sort or [])):
        present = [d for d in docs if d.get(key) is not None]
        missing = [d for d in docs if d.get(key) is None]
        present.sort(key=lambda d: d[key], reverse=direction < 0)
        docs = present + missing
    return docs


# ── Database class ───────────────────────────────────────────────────────────

class DocumentStore:
    """Keyed document store — singleton per process, lazy-initialized."""

    def __init__(self, database_url: Optional[str] = None, max_retries: Optional[int] = None):
        settings = get_settings()
        url = database_url or settings.database_url
        if "aiosqlite" in url:
            url = url.replace("sqlite+aiosqlite", "sqlite")

        self.engine = create_engine(url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.max_retries = max_retries or settings.store_max_retries
        self.retry_backoff = settings.store_retry_backoff_seconds

    def create_tables(self):
        """Create all collection tables (safe to call multiple times)."""
        Base.metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Connectivity check used by pre-flight."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    @contextmanager
    def get_session(self) -> Session:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _with_retry(self, op_name: str, fn: Callable[[], Any]) -> Any:
        """Retry transient database errors a bounded number of times."""
        for attempt in range(1, self.max_retries + 1):
            try:
                return fn()
            except OperationalError as e:
                if attempt == self.max_retries:
                    raise StoreError(f"{op_name} failed after {attempt} attempts: {e}") from e
                wait = self.retry_backoff * attempt
                logger.warning(f"{op_name}: transient store error (attempt {attempt}), retrying in {wait:.1f}s: {e}")
                time.sleep(wait)

    @staticmethod
    def _collection(name: str) -> Tuple[type, str]:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise ValueError(f"Unknown collection: {name}") from None

    def _candidate_rows(self, session: Session, model: type, key_field: str, flt: Filter):
        """Narrow by natural key in SQL when the filter allows it."""
        query = session.query(model)
        condition = (flt or {}).get(key_field, _MISSING)
        if condition is _MISSING:
            return query.all()
        if isinstance(condition, dict) and set(condition) == {"$in"}:
            keys = [str(v) for v in condition["$in"]]
            if not keys:
                return []
            return query.filter(model.natural_key.in_(keys)).all()
        if not isinstance(condition, (dict, list)):
            return query.filter(model.natural_key == str(condition)).all()
        return query.all()

    # ── Reads ─────────────────────────────────────────────────────────

    def find(
        self,
        collection: str,
        flt: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        projection: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, Any]]:
        model, key_field = self._collection(collection)

        def _run():
            with self.get_session() as session:
                rows = self._candidate_rows(session, model, key_field, flt or {})
                return [json.loads(r.body) for r in rows]

        docs = [d for d in self._with_retry(f"find({collection})", _run) if matches(d, flt)]
        docs = _sort(docs, sort)
        if limit:
            docs = docs[:limit]
        return [_project(d, projection) for d in docs]

    def find_one(self, collection: str, flt: Optional[Filter] = None, **kwargs) -> Optional[Dict[str, Any]]:
        docs = self.find(collection, flt, limit=1, **kwargs)
        return docs[0] if docs else None

    def count(self, collection: str, flt: Optional[Filter] = None) -> int:
        return len(self.find(collection, flt, projection=["id"]))

    # ── Writes ────────────────────────────────────────────────────────

    def update_one(
        self,
        collection: str,
        flt: Filter,
        update: Dict[str, Any],
        upsert: bool = False,
    ) -> UpdateResult:
        """Update the first matching document, inserting one when upsert=True."""
        model, key_field = self._collection(collection)

        def _run() -> UpdateResult:
            try:
                return self._update_one(model, key_field, flt, update, upsert)
            except IntegrityError:
                # Another writer inserted the same key first; apply as an update
                logger.debug(f"update_one({collection}): key conflict, retrying as update")
                return self._update_one(model, key_field, flt, update, upsert=False)

        return self._with_retry(f"update_one({collection})", _run)

    def _update_one(self, model, key_field: str, flt: Filter, update: Dict[str, Any], upsert: bool) -> UpdateResult:
        with self.get_session() as session:
            for row in self._candidate_rows(session, model, key_field, flt):
                doc = json.loads(row.body)
                if not matches(doc, flt):
                    continue
                before = row.body
                doc = apply_update(doc, update, inserting=False)
                doc["updated_at"] = utcnow().isoformat()
                doc["id"] = row.doc_id
                new_body = _dumps(doc)
                modified = int(_strip_updated(new_body) != _strip_updated(before))
                if str(doc.get(key_field, "")) != row.natural_key:
                    raise ValueError(f"Update may not change natural key '{key_field}'")
                row.body = new_body
                return UpdateResult(matched=1, modified=modified)

            if not upsert:
                return UpdateResult()

            doc = {
                k: _normalize(v) for k, v in flt.items()
                if not k.startswith("$") and not (isinstance(v, dict) and any(op.startswith("$") for op in v))
            }
            doc = apply_update(doc, update, inserting=True)
            key_value = doc.get(key_field)
            if key_value in (None, ""):
                raise ValueError(f"Upsert requires natural key '{key_field}'")
            doc.setdefault("id", new_id())
            now = utcnow().isoformat()
            doc.setdefault("created_at", now)
            doc["updated_at"] = now
            session.add(model(
                doc_id=str(doc["id"]),
                natural_key=str(key_value),
                body=_dumps(doc),
            ))
            session.flush()
            return UpdateResult(upserted_id=str(doc["id"]))

    def update_many(self, collection: str, flt: Filter, update: Dict[str, Any]) -> int:
        """Apply an update to every matching document. Returns the match count."""
        model, key_field = self._collection(collection)

        def _run() -> int:
            matched = 0
            with self.get_session() as session:
                for row in self._candidate_rows(session, model, key_field, flt):
                    doc = json.loads(row.body)
                    if not matches(doc, flt):
                        continue
                    doc = apply_update(doc, update, inserting=False)
                    doc["updated_at"] = utcnow().isoformat()
                    row.body = _dumps(doc)
                    matched += 1
            return matched

        return self._with_retry(f"update_many({collection})", _run)

    def bulk_write(self, collection: str, ops: List[UpdateOne], ordered: bool = False) -> BulkWriteResult:
        """Run keyed upserts one by one. Unordered: a failing op never stops the rest."""
        result = BulkWriteResult()
        for i, op in enumerate(ops):
            try:
                r = self.update_one(collection, op.filter, op.update, upsert=op.upsert)
            except (StoreError, ValueError) as e:
                result.errors.append(f"op {i} {op.filter}: {e}")
                logger.error(f"bulk_write({collection}) op {i} failed: {e}")
                if ordered:
                    break
                continue
            result.matched += r.matched
            result.modified += r.modified
            if r.upserted_id:
                result.upserted += 1
                result.upserted_ids.append(r.upserted_id)
        return result


def _strip_updated(body: str) -> str:
    doc = json.loads(body)
    doc.pop("updated_at", None)
    return json.dumps(doc, sort_keys=True)


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """Get or create the process-wide document store."""
    global _store
    if _store is None:
        _store = DocumentStore()
        _store.create_tables()
    return _store
