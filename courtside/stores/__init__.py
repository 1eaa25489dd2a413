from .base import MatchStore, StatisticStore, Stores, TournamentStore, UserStore
from .memory import MemoryBackend, memory_stores

__all__ = [
    'MatchStore',
    'MemoryBackend',
    'StatisticStore',
    'Stores',
    'TournamentStore',
    'UserStore',
    'memory_stores',
]
