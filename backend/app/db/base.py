from sqlalchemy import BigInteger, Integer, Numeric
from sqlalchemy.orm import DeclarativeBase

# SQLite n'auto-incrémente que "INTEGER PRIMARY KEY"
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# TND: 3 décimales
Money = Numeric(14, 3)


class Base(DeclarativeBase):
    pass
