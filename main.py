"""
geoflag主入口
解析命令行给出的用户名对应的位置信息
"""

import asyncio
import sys

from loguru import logger

from geoflag.datastore.engine import close_db, init_db
from geoflag.datastore.store import SqlStore
from geoflag.services import HeaderCapture, LocationResolver
from geoflag.settings import global_settings


async def main(handles: list[str]) -> None:
    """主函数"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if global_settings.debug else "INFO")

    if not handles:
        logger.error("Usage: python main.py <handle> [<handle> ...]")
        return

    logger.info("Starting geoflag...")

    # 初始化数据库
    await init_db()

    # 没有宿主页面流量可截获，直接使用默认请求头
    auth = HeaderCapture()
    auth.mark_ready()

    resolver = LocationResolver(store=SqlStore(), auth=auth)
    resolver.on_rate_limit_change(
        lambda reset_at: logger.info(f"Rate limit window changed: {reset_at}")
    )

    try:
        loaded = await resolver.start()
        logger.info(f"Cache ready with {loaded} entries")

        locations = await asyncio.gather(*(resolver.resolve(h) for h in handles))
        for handle, location in zip(handles, locations):
            print(f"@{handle}\t{location or '-'}")

        logger.debug(f"Health: {resolver.get_health_status()}")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        # 清理资源
        await resolver.close()
        await close_db()
        logger.info("geoflag stopped")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
