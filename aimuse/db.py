# aimuse/db.py
"""
Record store: the off-chain mirror of minted NFTs.

Records are exchanged as dicts with the API's camelCase keys:
  tokenId, owner, prompt, tokenURI, image, name, description, attributes,
  transactionHash, createdAt, updatedAt

The mirror has no transactional coupling to the chain. A minted token without a
record here is a valid state; callers decide whether to re-persist.
"""
import os
import json
import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from aimuse import monitoring
from aimuse.errors import ConflictError, NotFoundError, StoreUnavailableError, ValidationError

logger = monitoring.logger

# Default dev DB; on Vercel api/index.py sets DATABASE_URL to /tmp before import
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ai_muse.db")


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# token_id is a signed 64-bit BigInteger column; larger uint256 ids cannot be stored
MAX_TOKEN_ID = 2**63 - 1

# camelCase record key -> column attribute
FIELD_COLUMNS = {
    "owner": "owner",
    "prompt": "prompt",
    "tokenURI": "token_uri",
    "image": "image",
    "name": "name",
    "description": "description",
    "transactionHash": "transaction_hash",
}


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    # Create tables if they don't exist
    try:
        import aimuse.models as models  # noqa: F841
        Base.metadata.create_all(bind=engine)
    except Exception:
        # Surface in logs; don't crash the app at import time
        logger.exception("DB init failed")


def storable_token_id(token_id) -> bool:
    return 0 <= int(token_id) <= MAX_TOKEN_ID


def _now() -> datetime.datetime:
    return datetime.datetime.utcnow()


def _to_dict(row) -> Dict[str, Any]:
    return {
        "tokenId": row.token_id,
        "owner": row.owner,
        "prompt": row.prompt,
        "tokenURI": row.token_uri,
        "image": row.image,
        "name": row.name,
        "description": row.description,
        "attributes": json.loads(row.attributes_json or "[]"),
        "transactionHash": row.transaction_hash,
        "createdAt": row.created_at,
        "updatedAt": row.updated_at,
    }


def _unavailable(operation: str, exc: Exception) -> StoreUnavailableError:
    monitoring.inc_store_error(operation, StoreUnavailableError.error_code)
    logger.error("Record store error", extra={"operation": operation, "error": str(exc)})
    return StoreUnavailableError(f"Record store unavailable during {operation}: {exc}")


def find_by_owner(owner: str) -> List[Dict[str, Any]]:
    """Records owned by `owner` (case-insensitive), newest first."""
    from aimuse.models import NFTRecord
    db: Session = SessionLocal()
    try:
        rows = (
            db.query(NFTRecord)
            .filter(NFTRecord.owner == owner.lower())
            .order_by(NFTRecord.created_at.desc(), NFTRecord.id.desc())
            .all()
        )
        return [_to_dict(r) for r in rows]
    except SQLAlchemyError as e:
        raise _unavailable("find_by_owner", e) from e
    finally:
        db.close()


def find_by_token_id(token_id: int) -> Optional[Dict[str, Any]]:
    from aimuse.models import NFTRecord
    if not storable_token_id(token_id):
        return None
    db: Session = SessionLocal()
    try:
        row = db.query(NFTRecord).filter(NFTRecord.token_id == int(token_id)).first()
        return _to_dict(row) if row else None
    except SQLAlchemyError as e:
        raise _unavailable("find_by_token_id", e) from e
    finally:
        db.close()


def create_nft(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert a new record. Owner is lowercased and createdAt/updatedAt are stamped
    now, overriding anything the caller supplied.

    Raises ValidationError if tokenId does not fit the column, ConflictError if
    it already exists (unique constraint) and StoreUnavailableError on any
    other database failure.
    """
    from aimuse.models import NFTRecord
    if not storable_token_id(record["tokenId"]):
        monitoring.inc_store_error("create", ValidationError.error_code)
        raise ValidationError(f"tokenId {record['tokenId']} is outside the storable range 0..{MAX_TOKEN_ID}")
    now = _now()
    row = NFTRecord(
        token_id=int(record["tokenId"]),
        owner=str(record["owner"]).lower(),
        prompt=record["prompt"],
        token_uri=record["tokenURI"],
        image=record["image"],
        name=record["name"],
        description=record["description"],
        transaction_hash=record["transactionHash"],
        attributes_json=json.dumps(record.get("attributes") or []),
        created_at=now,
        updated_at=now,
    )
    db: Session = SessionLocal()
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("NFT record created", extra={"token_id": row.token_id, "owner": row.owner})
        return _to_dict(row)
    except IntegrityError as e:
        db.rollback()
        monitoring.inc_store_error("create", ConflictError.error_code)
        raise ConflictError(f"NFT with tokenId {record['tokenId']} already exists") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise _unavailable("create", e) from e
    finally:
        db.close()


def apply_update(token_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `fields` into the record for token_id and stamp updatedAt.

    tokenId, createdAt and unknown keys are ignored. updatedAt always moves
    strictly forward. Raises NotFoundError if there is no record.
    """
    from aimuse.models import NFTRecord
    if not storable_token_id(token_id):
        monitoring.inc_store_error("apply_update", NotFoundError.error_code)
        raise NotFoundError(f"NFT with tokenId {token_id} not found")
    db: Session = SessionLocal()
    try:
        row = db.query(NFTRecord).filter(NFTRecord.token_id == int(token_id)).first()
        if row is None:
            raise NotFoundError(f"NFT with tokenId {token_id} not found")

        for key, value in fields.items():
            column = FIELD_COLUMNS.get(key)
            if column is None:
                continue
            if key == "owner" and value is not None:
                value = str(value).lower()
            setattr(row, column, value)
        if "attributes" in fields:
            row.attributes_json = json.dumps(fields["attributes"] or [])

        now = _now()
        if row.updated_at is not None and now <= row.updated_at:
            now = row.updated_at + datetime.timedelta(microseconds=1)
        row.updated_at = now

        db.commit()
        db.refresh(row)
        logger.info("NFT record updated", extra={"token_id": row.token_id})
        return _to_dict(row)
    except NotFoundError:
        monitoring.inc_store_error("apply_update", NotFoundError.error_code)
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise _unavailable("apply_update", e) from e
    finally:
        db.close()
