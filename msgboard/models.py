from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime, Integer, String, func

Base = declarative_base()

MAX_MESSAGE_LENGTH = 500


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(String(MAX_MESSAGE_LENGTH), nullable=False)
    # column is named "timestamp" in the table, exposed as created_at
    created_at = Column(
        "timestamp", DateTime, nullable=False, server_default=func.current_timestamp()
    )
