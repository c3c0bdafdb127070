"""QuestDB persistence for market windows and book ticks."""

from phantomfill.storage.questdb import QuestDBWriter
from phantomfill.storage.reader import QuestDBReader, QuestDBWindowSource

__all__ = ["QuestDBWriter", "QuestDBReader", "QuestDBWindowSource"]
