"""Setup file for development installation."""

from setuptools import setup, find_namespace_packages

setup(
    name="realtime-chat",
    version="0.1.0",
    packages=find_namespace_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "structlog",
        "httpx",
        "prometheus-client",
        "opentelemetry-instrumentation-fastapi",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "realtime-chat-server=realtime_chat.api.server:main",
            "realtime-chat=realtime_chat.client.console:main",
        ],
    },
)
