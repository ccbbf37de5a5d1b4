from funnelchat.models.conversation import Conversation
from funnelchat.models.experience import Experience
from funnelchat.models.funnel import Funnel
from funnelchat.models.funnel_analytics import FunnelAnalytics
from funnelchat.models.funnel_interaction import FunnelInteraction
from funnelchat.models.message import Message
from funnelchat.models.resource import Resource

__all__ = [
    "Experience",
    "Funnel",
    "Conversation",
    "Message",
    "FunnelInteraction",
    "Resource",
    "FunnelAnalytics",
]
