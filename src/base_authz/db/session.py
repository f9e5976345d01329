"""数据库会话管理。"""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from base_authz.core.config import get_settings


@lru_cache
def get_engine() -> Engine:
    """返回全局数据库引擎，开启连接预检查以减少僵尸连接影响。"""
    return create_engine(get_settings().database_url, future=True, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """统一会话工厂，策略存储与路由层共用。"""
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话。"""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
