"""
ORM 声明基类

交易、余额账户、投递记录与已处理事件共用同一份 metadata，建表/删表时一次完成。
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
