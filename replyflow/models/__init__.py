"""SQLAlchemy ORM models — public API re-exports."""

from replyflow.models.company import Company  # noqa: F401
from replyflow.models.ai_configuration import AiConfiguration, AiPersonality  # noqa: F401
from replyflow.models.customer import Customer  # noqa: F401
from replyflow.models.platform_connection import PlatformConnection  # noqa: F401
from replyflow.models.conversation import Conversation  # noqa: F401
from replyflow.models.message import Message  # noqa: F401
from replyflow.models.media_processing_result import MediaProcessingResult  # noqa: F401
from replyflow.models.knowledge_base import KnowledgeBase, KnowledgeChunk  # noqa: F401
from replyflow.models.product import Product, ProductCategory, ProductEmbedding  # noqa: F401
from replyflow.models.calendar_configuration import CalendarConfiguration  # noqa: F401
from replyflow.models.appointment import Appointment  # noqa: F401
from replyflow.models.base import Base  # noqa: F401
