from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models with automatic table naming."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()

    @declared_attr.directive
    def __mapper_args__(cls) -> dict:  # noqa: N805
        # fetch server-generated timestamps on flush
        return {"eager_defaults": True}


# Import models to ensure metadata registration for Alembic
try:  # pragma: no cover - import side effects only
    import cashback_api.models  # noqa: F401,WPS433
except ImportError:  # pragma: no cover - circular import while models load
    pass
