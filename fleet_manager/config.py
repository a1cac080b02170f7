import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

# Carrega variáveis de ambiente do arquivo .env
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_COST_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class Settings:
    """
    Configuração da aplicação lida do ambiente (ou do arquivo .env).
    """
    database_url: str
    log_level: str
    actor_header: str
    google_api_key: Optional[str]
    gemini_model: str
    cost_tolerance: Decimal


def _tolerance(raw: Optional[str]) -> Decimal:
    if not raw:
        return DEFAULT_COST_TOLERANCE
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value < 0:
        logger.warning(
            "COST_TOLERANCE inválido (%r); usando %s", raw, DEFAULT_COST_TOLERANCE
        )
        return DEFAULT_COST_TOLERANCE
    return value


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///fleet.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        # Cabeçalho preenchido pelo proxy de autenticação com o nome do usuário
        actor_header=os.getenv("ACTOR_HEADER", "X-Forwarded-User"),
        google_api_key=os.getenv("GOOGLE_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-flash-latest"),
        cost_tolerance=_tolerance(os.getenv("COST_TOLERANCE")),
    )


settings = load_settings()
