"""Analysis provider invokers."""

from .base import ProviderInvoker, ProviderName
from .http_invoker import DEFAULT_MODELS, HttpProviderInvoker

__all__ = ["DEFAULT_MODELS", "HttpProviderInvoker", "ProviderInvoker", "ProviderName"]
