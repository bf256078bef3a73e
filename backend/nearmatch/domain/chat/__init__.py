from .delivery import DeliveryPipeline, Notifier, NullNotifier
from .models import NEW_MESSAGE_FRAME, ConversationSummary

__all__ = ["ConversationSummary", "DeliveryPipeline", "NEW_MESSAGE_FRAME", "Notifier", "NullNotifier"]
