"""Base model shared by all domain entities"""

from sqlmodel import SQLModel


class BaseModel(SQLModel):
    """Base class for SQLModel tables"""
    pass
