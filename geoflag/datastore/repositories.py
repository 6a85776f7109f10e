"""
数据库Repository层 - 封装数据访问逻辑
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from geoflag.datastore.models import KeyValueDB


class KeyValueRepository:
    """键值存储Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> str | None:
        """获取指定key的值"""
        result = await self.session.execute(
            select(KeyValueDB).where(KeyValueDB.key == key)
        )
        row = result.scalar_one_or_none()
        return row.value if row else None

    async def put(self, key: str, value: str) -> None:
        """写入或更新指定key的值"""
        result = await self.session.execute(
            select(KeyValueDB).where(KeyValueDB.key == key)
        )
        row = result.scalar_one_or_none()

        if row:
            # 更新现有记录
            row.value = value
            row.updated_at = datetime.now()
            logger.debug(f"Updated kv entry: {key} ({len(value)} bytes)")
        else:
            # 创建新记录
            self.session.add(KeyValueDB(key=key, value=value))
            logger.debug(f"Created kv entry: {key} ({len(value)} bytes)")

