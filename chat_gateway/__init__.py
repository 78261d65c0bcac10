"""
chat_gateway: canonical chat-completion gateway in front of heterogeneous
backend chat APIs.
"""

__version__ = "0.1.0"
