import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


uuidpk = Annotated[
    uuid.UUID,
    mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
]

created_ts = Annotated[
    datetime,
    mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
]
