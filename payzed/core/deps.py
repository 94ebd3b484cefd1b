from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from payzed.core.chain import ChainClient
from payzed.core.db import Database


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.database.session() as session:
        yield session


def get_chain(request: Request) -> ChainClient:
    return request.app.state.chain


def get_worker(request: Request):
    return request.app.state.worker


def get_broadcaster(request: Request):
    return request.app.state.broadcaster
