from .router import PROVIDER_TYPES, chat_completion

__all__ = ["PROVIDER_TYPES", "chat_completion"]
