import logging
from core.database import Database
# 导入聚合模块即把所有表注册到 Base.metadata
from models.models import Base

logger = logging.getLogger(__name__)


async def init_db(db: Database) -> None:
    """创建所有尚不存在的表"""
    logger.info("正在初始化数据库表...")
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("数据库表校验/创建完成")
