import logging

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from fleet_manager.config import settings
from fleet_manager.models import *  # noqa: F401,F403  registra as tabelas no metadata

logger = logging.getLogger(__name__)


def build_engine(database_url: str, **kwargs):
    """
    Cria o engine do banco. Para SQLite desativa o check de thread
    e liga a verificação de chaves estrangeiras em cada conexão.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}

    new_engine = create_engine(database_url, connect_args=connect_args, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.database_url)


def create_db_and_tables(bind=None):
    """
    Cria o banco de dados e todas as tabelas definidas nos modelos.
    Deve ser chamado na inicialização da aplicação.
    """
    SQLModel.metadata.create_all(bind or engine)
    logger.info("Database tables ready")


def get_session():
    """
    Dependência para obter uma sessão do banco de dados.
    Gerencia o ciclo de vida da sessão (abre e fecha automaticamente).
    """
    with Session(engine) as session:
        yield session
