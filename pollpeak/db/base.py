from sqlalchemy import BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import JSON

# sqlite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONDocument = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    """ this is the base class for all models """
