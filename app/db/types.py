from sqlalchemy import BigInteger, Integer

# SQLite only autoincrements an INTEGER PRIMARY KEY, so BIGINT id columns
# fall back to Integer there (in-memory test databases).
BIGINT = BigInteger().with_variant(Integer, "sqlite")
