"""Model gateway and the tool-orchestration loop."""

from .client import ClientSettings, OpenAIModelGateway, describe_gateway_error

__all__ = ["ClientSettings", "OpenAIModelGateway", "describe_gateway_error"]
