from rebalancer.infrastructure.knowledge_base.config import build_knowledge_base
from rebalancer.infrastructure.knowledge_base.in_memory import InMemoryKnowledgeBase

__all__ = ["InMemoryKnowledgeBase", "build_knowledge_base"]
