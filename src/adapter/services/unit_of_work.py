from sqlmodel.ext.asyncio.session import AsyncSession
from src.app.services.unit_of_work import UnitOfWork


class SqlAlchemyUnitOfWork(UnitOfWork):
    """
    Transaction boundary over one AsyncSession

    Repositories built on the same session only flush; nothing reaches the
    database until a use case commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            await self.rollback()

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        if self.session.in_transaction():
            await self.session.rollback()
