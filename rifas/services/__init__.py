from rifas.services.engine import RaffleEngine, build_engine

__all__ = ["RaffleEngine", "build_engine"]
