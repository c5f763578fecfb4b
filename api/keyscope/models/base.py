"""Shared imports for all model modules."""
import uuid
from datetime import datetime, date
from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Boolean, Uuid,
    Date, DateTime, ForeignKey, CheckConstraint, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from keyscope.database import Base

# SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")
