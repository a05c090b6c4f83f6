# Ben-Or Node HTTP Package
from .server import create_node_app, MessagePayload, NodeStateResponse

__all__ = ["create_node_app", "MessagePayload", "NodeStateResponse"]
