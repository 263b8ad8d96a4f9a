"""Chatbot Core 顶层包。

该包实现一个面向 OpenAI 兼容补全接口的交互式命令行聊天客户端，
包括配置加载、领域模型、流式传输与 SSE 解码、人设注册表和单轮对话编排。
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
