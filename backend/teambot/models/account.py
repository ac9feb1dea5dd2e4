# teambot/models/account.py
from sqlalchemy import Column, String, Integer
from teambot.database import Base


class UserAccount(Base):
    """Bank account -> roster name."""

    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)


class GroupmeAccount(Base):
    """Chat user -> the bank account they collect payments on."""

    __tablename__ = "groupme_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    account = Column(String, nullable=False)
