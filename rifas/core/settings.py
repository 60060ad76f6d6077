from os import getenv, path
from pydantic import BaseModel
from supabase import create_client, Client
from dotenv import load_dotenv

from rifas.core.errors import ConfigurationError

# =====================================================
# Cargar .env desde la raíz del proyecto (junto a rifas/)
# =====================================================
BASE_DIR = path.dirname(path.abspath(__file__))        # rifas/core
PACKAGE_DIR = path.dirname(BASE_DIR)                   # rifas/
ROOT_DIR = path.dirname(PACKAGE_DIR)                   # <root>/
ENV_PATH = path.join(ROOT_DIR, ".env")
load_dotenv(ENV_PATH)
# =====================================================


def _default_backend() -> str:
    explicit = getenv("STORE_BACKEND", "").strip().lower()
    if explicit:
        return explicit
    return "supabase" if getenv("SUPABASE_URL") else "memory"


def _flag(name: str, default: str) -> bool:
    return getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    supabase_url: str = getenv("SUPABASE_URL", "")
    supabase_service_key: str = getenv("SUPABASE_SERVICE_KEY", "")
    public_anon_key: str = getenv("PUBLIC_SUPABASE_ANON_KEY", "")
    store_backend: str = _default_backend()

    # Reservas
    reservation_minutes: int = int(getenv("RESERVATION_MINUTES", "15"))
    max_tickets_per_order: int = int(getenv("MAX_TICKETS_PER_ORDER", "10000"))
    random_bulk_threshold: int = int(getenv("RANDOM_BULK_THRESHOLD", "100"))
    max_random_tickets: int = int(getenv("MAX_RANDOM_TICKETS", "100000"))

    # Sorteo por lotería externa (últimos K dígitos)
    lottery_digits: int = int(getenv("LOTTERY_DIGITS", "2"))

    # Limpieza de reservas vencidas
    cleanup_interval_seconds: int = int(getenv("CLEANUP_INTERVAL_SECONDS", "60"))
    sweep_grace_seconds: int = int(getenv("SWEEP_GRACE_SECONDS", "0"))

    # Tareas periódicas junto al barrido
    reminder_minutes: int = int(getenv("PAYMENT_REMINDER_MINUTES", "30"))  # 0 = sin recordatorios
    notify_pending_approvals: bool = _flag("NOTIFY_PENDING_APPROVALS", "true")
    auto_draw: bool = _flag("AUTO_DRAW", "true")

    # Notificaciones (email/telegram vía webhook)
    notify_webhook_url: str = getenv("NOTIFY_WEBHOOK_URL", "")
    notify_timeout_seconds: float = float(getenv("NOTIFY_TIMEOUT_SECONDS", "8"))

    admin_api_key: str = getenv("ADMIN_API_KEY", "")

    cloudinary_cloud_name: str = getenv("CLOUDINARY_CLOUD_NAME", "")
    cloudinary_api_key: str = getenv("CLOUDINARY_API_KEY", "")
    cloudinary_api_secret: str = getenv("CLOUDINARY_API_SECRET", "")
    payments_folder: str = getenv("PAYMENTS_FOLDER", "comprobantes")

    # Límites del plan de la organización (0 = sin límite)
    max_active_raffles: int = int(getenv("MAX_ACTIVE_RAFFLES", "0"))
    max_tickets_per_raffle: int = int(getenv("MAX_TICKETS_PER_RAFFLE", "0"))

    log_level: str = getenv("LOG_LEVEL", "INFO")
    log_file: str = getenv("LOG_FILE", "")


settings = Settings()


def make_client(cfg: Settings = settings) -> Client:
    if not cfg.supabase_url or not cfg.supabase_service_key:
        raise ConfigurationError("Faltan SUPABASE_URL o SUPABASE_SERVICE_KEY")
    return create_client(cfg.supabase_url, cfg.supabase_service_key)
