import pytest_asyncio

from app.db.database import Database
from app.models.user import User, UserRole
from app.services.conversation_store import ConversationStore


async def create_user(database, email, username="tester", role=UserRole.USER):
    async with database.session() as session:
        user = User(email=email, username=username, hashed_password="not-a-real-hash", role=role)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database):
    return ConversationStore(database)


@pytest_asyncio.fixture
async def alice(database):
    return await create_user(database, "alice@example.com", "alice")


@pytest_asyncio.fixture
async def bob(database):
    return await create_user(database, "bob@example.com", "bob")
