from rifas.core.errors import ConfigurationError
from rifas.core.settings import Settings, make_client
from rifas.stores.interfaces import TicketStore
from rifas.stores.memory_store import InMemoryTicketStore
from rifas.stores.supabase_store import SupabaseTicketStore


def build_store(cfg: Settings) -> TicketStore:
    backend = (cfg.store_backend or "memory").lower()
    if backend == "memory":
        return InMemoryTicketStore()
    if backend == "supabase":
        return SupabaseTicketStore(make_client(cfg))
    raise ConfigurationError(f"STORE_BACKEND desconocido: {backend}")


__all__ = ["TicketStore", "InMemoryTicketStore", "SupabaseTicketStore", "build_store"]
