# qrcheckin/db/models.py
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, BigInteger


class Base(DeclarativeBase):
    pass


class UsedToken(Base):
    __tablename__ = "used_tokens"

    # nonce is the replay key; the PK makes the insert a conditional write
    nonce: Mapped[str] = mapped_column(String(64), primary_key=True)
    consumed_at: Mapped[int] = mapped_column(BigInteger)  # epoch ms
    expires_at: Mapped[int] = mapped_column(BigInteger, index=True)  # epoch ms, for reaping
