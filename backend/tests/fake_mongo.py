"""In-memory stand-in for the motor database used by the unit tests.

Supports the subset of the driver the application uses: equality/operator
filters, $set/$inc/$setOnInsert updates, upserts, find_one_and_update,
sorted/limited cursors, $match/$group/$sort/$limit pipelines, unique
indexes and sessions with transactions that roll back on error. Each
operation yields to the event loop once before it runs, so concurrent callers
interleave the way they would against a server.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import CollectionInvalid, DuplicateKeyError


class FakeUpdateResult:
    def __init__(self, matched_count: int, modified_count: int, upserted_id: Any = None) -> None:
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_id = upserted_id


class FakeInsertResult:
    def __init__(self, inserted_id: Any) -> None:
        self.inserted_id = inserted_id


def _matches_condition(value: Any, present: bool, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, expected in condition.items():
            if op == "$gte" and not (present and value is not None and value >= expected):
                return False
            if op == "$gt" and not (present and value is not None and value > expected):
                return False
            if op == "$lte" and not (present and value is not None and value <= expected):
                return False
            if op == "$lt" and not (present and value is not None and value < expected):
                return False
            if op == "$ne" and value == expected:
                return False
            if op == "$in" and value not in expected:
                return False
            if op == "$exists" and present != bool(expected):
                return False
        return True
    if condition is None:
        return value is None
    return present and value == condition


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (query or {}).items():
        if not _matches_condition(doc.get(key), key in doc, condition):
            return False
    return True


def project(doc: Dict[str, Any], projection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        result = {k: doc[k] for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    for key, flag in projection.items():
        if not flag:
            doc.pop(key, None)
    return doc


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> None:
    for key, value in update.get("$set", {}).items():
        doc[key] = copy.deepcopy(value)
    for key, value in update.get("$inc", {}).items():
        doc[key] = doc.get(key, 0) + value
    for key in update.get("$unset", {}):
        doc.pop(key, None)
    if inserting:
        for key, value in update.get("$setOnInsert", {}).items():
            doc[key] = copy.deepcopy(value)


def evaluate(expression: Any, doc: Dict[str, Any]) -> Any:
    """Aggregation expression: "$field" paths, literals and $substrBytes."""
    if isinstance(expression, str) and expression.startswith("$"):
        return doc.get(expression[1:])
    if isinstance(expression, dict) and "$substrBytes" in expression:
        source, start, length = expression["$substrBytes"]
        value = evaluate(source, doc)
        return "" if value is None else str(value)[start:start + length]
    return expression


def group(docs: List[Dict[str, Any]], spec: Dict[str, Any]) -> List[Dict[str, Any]]:
    groups: Dict[Any, Dict[str, Any]] = {}
    for doc in docs:
        key = evaluate(spec["_id"], doc)
        row = groups.setdefault(key, {"_id": key})
        for field, accumulator in spec.items():
            if field == "_id":
                continue
            if set(accumulator) != {"$sum"}:
                raise NotImplementedError(f"Unsupported accumulator: {accumulator}")
            row[field] = row.get(field, 0) + (evaluate(accumulator["$sum"], doc) or 0)
    return list(groups.values())


def run_pipeline(docs: List[Dict[str, Any]], pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    docs = copy.deepcopy(docs)
    for stage in pipeline:
        (operator, argument), = stage.items()
        if operator == "$match":
            docs = [d for d in docs if matches(d, argument)]
        elif operator == "$group":
            docs = group(docs, argument)
        elif operator == "$sort":
            docs = FakeCursor(docs).sort(list(argument.items()))._docs
        elif operator == "$limit":
            docs = docs[:argument]
        else:
            raise NotImplementedError(f"Unsupported pipeline stage: {operator}")
    return docs


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs
        self._limit: Optional[int] = None

    def sort(self, key, direction: int = 1) -> "FakeCursor":
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(
                key=lambda d: (d.get(field) is not None, d.get(field)),
                reverse=order < 0,
            )
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        docs = self._docs
        for bound in (self._limit, length):
            if bound:
                docs = docs[:bound]
        return docs


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        # Collections spring into existence on first write, as on a server
        self.exists = False
        self.indexes: Dict[str, Dict[str, Any]] = {"_id_": {"key": [("_id", 1)]}}

    # ---- helpers -------------------------------------------------------

    def seed(self, *docs: Dict[str, Any]) -> None:
        """Insert documents synchronously (test setup)."""
        for doc in docs:
            doc = copy.deepcopy(doc)
            doc.setdefault("_id", ObjectId())
            self.docs.append(doc)
        self.exists = True

    def _check_unique(self, candidate: Dict[str, Any], ignore: Optional[Dict[str, Any]] = None) -> None:
        for name, info in self.indexes.items():
            if not info.get("unique"):
                continue
            fields = [field for field, _ in info["key"]]
            if info.get("sparse") and not all(f in candidate for f in fields):
                continue
            values = [candidate.get(f) for f in fields]
            for other in self.docs:
                if other is ignore:
                    continue
                if info.get("sparse") and not all(f in other for f in fields):
                    continue
                if [other.get(f) for f in fields] == values:
                    raise DuplicateKeyError(f"E11000 duplicate key error index: {name}")

    def _first(self, query: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for doc in self.docs:
            if matches(doc, query):
                return doc
        return None

    def _upsert_doc(self, query: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        doc = {
            k: v for k, v in (query or {}).items()
            if not (isinstance(v, dict) and any(str(op).startswith("$") for op in v))
        }
        apply_update(doc, update, inserting=True)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        self.exists = True
        return doc

    def _update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> bool:
        before = copy.deepcopy(doc)
        candidate = copy.deepcopy(doc)
        apply_update(candidate, update)
        self._check_unique(candidate, ignore=doc)
        doc.clear()
        doc.update(candidate)
        return doc != before

    # ---- driver API ----------------------------------------------------

    async def insert_one(self, document: Dict[str, Any], session=None) -> FakeInsertResult:
        await asyncio.sleep(0)
        doc = copy.deepcopy(document)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        self.exists = True
        document.setdefault("_id", doc["_id"])
        return FakeInsertResult(doc["_id"])

    async def find_one(self, filter=None, projection=None, session=None) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        doc = self._first(filter)
        return project(doc, projection) if doc is not None else None

    def find(self, filter=None, projection=None, session=None) -> FakeCursor:
        return FakeCursor([project(d, projection) for d in self.docs if matches(d, filter)])

    async def update_one(self, filter, update, upsert: bool = False, session=None) -> FakeUpdateResult:
        await asyncio.sleep(0)
        doc = self._first(filter)
        if doc is None:
            if upsert:
                created = self._upsert_doc(filter, update)
                return FakeUpdateResult(0, 0, created["_id"])
            return FakeUpdateResult(0, 0)
        changed = self._update(doc, update)
        return FakeUpdateResult(1, 1 if changed else 0)

    async def find_one_and_update(
        self,
        filter,
        update,
        projection=None,
        return_document: bool = False,
        upsert: bool = False,
        session=None,
    ) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        doc = self._first(filter)
        if doc is None:
            if upsert:
                created = self._upsert_doc(filter, update)
                return project(created, projection) if return_document else None
            return None
        before = project(doc, projection)
        self._update(doc, update)
        return project(doc, projection) if return_document else before

    def aggregate(self, pipeline, session=None) -> FakeCursor:
        return FakeCursor(run_pipeline(self.docs, pipeline))

    async def count_documents(self, filter, session=None) -> int:
        await asyncio.sleep(0)
        return sum(1 for d in self.docs if matches(d, filter))

    async def create_index(self, keys, **options) -> str:
        await asyncio.sleep(0)
        if isinstance(keys, str):
            keys = [(keys, 1)]
        name = options.get("name") or "_".join(f"{k}_{d}" for k, d in keys)
        self.indexes[name] = {"key": list(keys), **options}
        self.exists = True
        return name

    async def index_information(self) -> Dict[str, Dict[str, Any]]:
        await asyncio.sleep(0)
        return copy.deepcopy(self.indexes)


class FakeTransaction:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database
        self._snapshot: Dict[str, List[Dict[str, Any]]] = {}

    async def __aenter__(self) -> "FakeTransaction":
        self._snapshot = {
            name: copy.deepcopy(col.docs) for name, col in self._database.collections.items()
        }
        self._database.transactions_started += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            for name, col in self._database.collections.items():
                col.docs = self._snapshot.get(name, [])
            self._database.transactions_aborted += 1
        return False


class FakeSession:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database

    def start_transaction(self) -> FakeTransaction:
        return FakeTransaction(self._database)

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeAdmin:
    async def command(self, name: str) -> Dict[str, Any]:
        return {"ok": 1.0}


class FakeClient:
    def __init__(self, database: "FakeDatabase") -> None:
        self._database = database
        self.admin = FakeAdmin()
        self.closed = False

    async def start_session(self) -> FakeSession:
        return FakeSession(self._database)

    def close(self) -> None:
        self.closed = True


class FakeDatabase:
    """Attribute and item access return (lazily created) collections."""

    def __init__(self, name: str = "document_store_test") -> None:
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}
        self.client = FakeClient(self)
        self.transactions_started = 0
        self.transactions_aborted = 0

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("__"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self) -> List[str]:
        await asyncio.sleep(0)
        return [name for name, col in self.collections.items() if col.exists]

    async def create_collection(self, name: str) -> FakeCollection:
        await asyncio.sleep(0)
        collection = self[name]
        if collection.exists:
            raise CollectionInvalid(f"collection {name} already exists")
        collection.exists = True
        return collection
