from .database import Base, engine
from .routes import router


def init_finance_module() -> None:
    Base.metadata.create_all(bind=engine)


__all__ = ["router", "init_finance_module"]
