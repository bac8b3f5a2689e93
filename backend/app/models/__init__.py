"""Convenience imports for Alembic metadata discovery."""

from app.models.ticket import Ticket, TicketComment
from app.models.complexity_score import ComplexityScore
from app.models.auto_response import AutoResponse
from app.models.faq_cache_entry import FaqCacheEntry
from app.models.knowledge_article import KnowledgeArticle
from app.models.learning_queue_item import LearningQueueItem
from app.models.escalation_rule import EscalationRule
from app.models.ai_usage_record import AiUsageRecord
from app.models.ai_feedback import AiFeedback
from app.models.ai_setting import AiSetting
from app.models.automation_event import AutomationEvent  # noqa: F401
