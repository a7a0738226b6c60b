# aimuse/models.py
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text
import datetime

from aimuse.db import Base


class NFTRecord(Base):
    __tablename__ = "nfts"

    id = Column(Integer, primary_key=True, index=True)
    token_id = Column(BigInteger, unique=True, index=True, nullable=False)
    owner = Column(String(64), index=True, nullable=False)
    prompt = Column(Text, nullable=False)
    token_uri = Column(Text, nullable=False)
    image = Column(Text, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    transaction_hash = Column(String(80), nullable=False)
    attributes_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
