# store_backend/db/mongo_client.py

# This file handles MongoDB connection, disconnection, index setup,
# and provides simple data access functions.

import asyncio
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection  # Import Collection for type hinting
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config.settings import Settings
from ..shared.logger import get_logger

logger = get_logger("mongo_client")

# --- Collection names ---
STORES = "stores"
SUBSCRIPTION_PLANS = "subscription_plans"
PENDING_PAYMENTS = "pending_payments"

# --- Global DB Client and Database reference ---
mongo_client: MongoClient | None = None
mongo_db = None  # Reference to the specific database


# --- Connection Function ---
async def connect_to_mongo(settings: Settings):
    """Connects to MongoDB using URI from Settings object and gets database using settings.DB_NAME."""
    global mongo_client, mongo_db
    if mongo_client is not None:
        logger.info("MongoDB client already connected")
        return

    if not settings.MONGODB_URI or not settings.DB_NAME:
        logger.error("MONGODB_URI or DB_NAME is not set in settings")
        return

    try:
        logger.info("Attempting to connect to MongoDB")
        # Synchronous MongoClient; blocking calls are pushed to a worker thread
        client = MongoClient(settings.MONGODB_URI, serverSelectionTimeoutMS=5000)
        await asyncio.to_thread(client.admin.command, 'ping')
        mongo_client = client
        mongo_db = client.get_database(settings.DB_NAME)
        logger.info("MongoDB connection successful", db_name=settings.DB_NAME)
    except ConnectionFailure as e:
        logger.error("MongoDB connection failed", error=str(e))
        mongo_client = None
        mongo_db = None


# --- Disconnection Function ---
async def close_mongo_connection(client: MongoClient | None = None):
    """Closes the MongoDB client connection."""
    global mongo_client, mongo_db
    client_to_close = client if client is not None else mongo_client

    if client_to_close:
        await asyncio.to_thread(client_to_close.close)
        mongo_client = None
        mongo_db = None
        logger.info("MongoDB connection closed")
    else:
        logger.info("No active MongoDB client to close")


# --- Getter functions for collections ---
# Provides access to specific collections. Returns None if DB not connected.
def _get_collection(name: str) -> Optional[Collection]:
    if mongo_db is None:
        logger.error("MongoDB database not initialized", collection=name)
        return None
    return mongo_db.get_collection(name)


def get_stores_collection() -> Optional[Collection]:
    """Gets the MongoDB 'stores' collection."""
    return _get_collection(STORES)


def get_subscription_plans_collection() -> Optional[Collection]:
    """Gets the MongoDB 'subscription_plans' collection."""
    return _get_collection(SUBSCRIPTION_PLANS)


def get_pending_payments_collection() -> Optional[Collection]:
    """Gets the MongoDB 'pending_payments' collection."""
    return _get_collection(PENDING_PAYMENTS)


def require_collection(collection_getter) -> Collection:
    """Calls a collection getter and raises RuntimeError when the database is not connected."""
    collection = collection_getter()
    if collection is None:
        raise RuntimeError(f"Database collection not accessible via {collection_getter.__name__}")
    return collection


# --- Index setup ---
async def ensure_indexes():
    """Creates the indexes the subscription and payment logic relies on."""
    stores = require_collection(get_stores_collection)
    plans = require_collection(get_subscription_plans_collection)
    pending = require_collection(get_pending_payments_collection)

    def _create():
        stores.create_index([("domain", ASCENDING)], unique=True)
        stores.create_index([("status", ASCENDING), ("subscription.is_subscribed", ASCENDING)])
        stores.create_index([("subscription.end_date", ASCENDING)])
        stores.create_index([("subscription.trial_end_date", ASCENDING)])
        plans.create_index([("type", ASCENDING), ("is_active", ASCENDING)])
        plans.create_index([("sort_order", ASCENDING)])
        # reference is the idempotency key for activation
        pending.create_index([("reference", ASCENDING)], unique=True)
        # TTL: MongoDB deletes the record once expires_at has passed
        pending.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
        pending.create_index([("status", ASCENDING), ("expires_at", ASCENDING)])
        pending.create_index([("store", ASCENDING), ("status", ASCENDING)])
        pending.create_index([("created_at", ASCENDING)])

    await asyncio.to_thread(_create)
    logger.info("MongoDB indexes ensured")


# --- Data Access Functions (CRUD) ---
# Errors are logged with context and re-raised: the reconciliation paths need
# to see them to count activation errors.
async def find_one(collection: Collection, query: Dict[str, Any], projection: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Finds a single document in a collection."""
    try:
        return await asyncio.to_thread(collection.find_one, query, projection)
    except PyMongoError as e:
        logger.error("MongoDB error during find_one", collection=collection.name, error=str(e))
        raise


async def find_by_id(collection: Collection, doc_id: Any) -> Optional[Dict[str, Any]]:
    """Finds a document by ObjectId (or its string form). Invalid ids find nothing."""
    try:
        object_id = doc_id if isinstance(doc_id, ObjectId) else ObjectId(str(doc_id))
    except Exception:
        return None
    return await find_one(collection, {"_id": object_id})


async def find_many(collection: Collection, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Finds multiple documents in a collection."""
    limit = options.get("limit", 0) if options else 0
    sort = options.get("sort", None) if options else None
    projection = options.get("projection", None) if options else None
    skip = options.get("skip", 0) if options else 0

    def _run():
        cursor = collection.find(query, projection)
        if sort:
            cursor = cursor.sort(sort)
        if skip > 0:
            cursor = cursor.skip(skip)
        if limit > 0:
            cursor = cursor.limit(limit)
        return list(cursor)

    try:
        return await asyncio.to_thread(_run)
    except PyMongoError as e:
        logger.error("MongoDB error during find_many", collection=collection.name, error=str(e))
        raise


async def count_documents(collection: Collection, query: Dict[str, Any]) -> int:
    """Counts documents matching a query."""
    try:
        return await asyncio.to_thread(collection.count_documents, query)
    except PyMongoError as e:
        logger.error("MongoDB error during count_documents", collection=collection.name, error=str(e))
        raise


async def insert_one(collection: Collection, document: Dict[str, Any]) -> ObjectId:
    """Inserts a single document into a collection and returns its ObjectId."""
    try:
        result = await asyncio.to_thread(collection.insert_one, document)
        return result.inserted_id
    except PyMongoError as e:
        # DuplicateKeyError (code 11000) included; callers decide what a duplicate means
        logger.error("MongoDB error during insert_one", collection=collection.name, error=str(e))
        raise


async def update_one(collection: Collection, query: Dict[str, Any], update: Dict[str, Any]) -> bool:
    """
    Applies an update document (with operators) to the first match.
    Returns True when a document matched the filter.
    """
    try:
        result = await asyncio.to_thread(collection.update_one, query, update)
        return result.matched_count == 1
    except PyMongoError as e:
        logger.error("MongoDB error during update_one", collection=collection.name, error=str(e))
        raise


async def update_one_by_id(collection: Collection, doc_id: Any, update_data: Dict[str, Any]) -> bool:
    """
    Updates a single document by its ObjectId with $set.
    Returns True if a document was matched (even when the data was identical).
    """
    try:
        object_id = doc_id if isinstance(doc_id, ObjectId) else ObjectId(str(doc_id))
    except Exception:
        logger.warning("Invalid ObjectId provided to update_one_by_id", doc_id=str(doc_id))
        return False
    return await update_one(collection, {"_id": object_id}, {"$set": update_data})


async def find_one_and_update(
    collection: Collection,
    query: Dict[str, Any],
    update: Dict[str, Any],
    return_after: bool = True,
) -> Optional[Dict[str, Any]]:
    """
    Atomically updates the first document matching query.
    Returns the document after (or before) the update, or None when nothing matched.
    """
    return_document = ReturnDocument.AFTER if return_after else ReturnDocument.BEFORE
    try:
        return await asyncio.to_thread(collection.find_one_and_update, query, update, return_document=return_document)
    except PyMongoError as e:
        logger.error("MongoDB error during find_one_and_update", collection=collection.name, error=str(e))
        raise


async def delete_one(collection: Collection, query: Dict[str, Any]) -> int:
    """Deletes the first match and returns the deleted count."""
    try:
        result = await asyncio.to_thread(collection.delete_one, query)
        return result.deleted_count
    except PyMongoError as e:
        logger.error("MongoDB error during delete_one", collection=collection.name, error=str(e))
        raise


async def delete_many(collection: Collection, query: Dict[str, Any]) -> int:
    """Deletes every match and returns the deleted count."""
    try:
        result = await asyncio.to_thread(collection.delete_many, query)
        return result.deleted_count
    except PyMongoError as e:
        logger.error("MongoDB error during delete_many", collection=collection.name, error=str(e))
        raise
