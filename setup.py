"""
Packaging for the ELLU Studios course assistant.

    pip install -e .            # API server, CLI and ingestion script
    pip install -e ".[test]"    # plus pytest and the FastAPI test client
"""

from pathlib import Path

from setuptools import setup, find_packages

HERE = Path(__file__).parent
README = HERE / "README.md"

install_requires = [
    # retrieval graph and tracing
    "langchain-core>=0.3.0",
    "langgraph>=0.2.0",
    "langsmith>=0.1.0",
    # course vectors
    "chromadb>=0.5.0",
    # providers (Gemini goes through requests)
    "openai>=1.50.0",
    "anthropic>=0.36.0",
    "requests>=2.31.0",
    # HTTP API
    "fastapi>=0.110.0",
    "uvicorn>=0.30.0",
    "pydantic>=2.0.0",
    # configuration
    "pyyaml>=6.0.0",
    "python-dotenv>=1.0.0",
    # conversation PDF export
    "reportlab>=4.0.0",
]

test_requires = [
    "pytest>=8.0.0",
    "pytest-cov>=5.0.0",
    "httpx>=0.27.0",
]

setup(
    name="ellu-studios-assistant",
    version="1.0.0",
    author="ELLU Studios",
    description="Course assistant for ELLU Studios fashion-design students: RAG chat over course material",
    long_description=README.read_text(encoding="utf-8") if README.exists() else "",
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    packages=find_packages(include=["ellu", "ellu.*", "config"]),
    py_modules=["api", "main"],
    include_package_data=True,
    package_data={"config": ["*.yaml"]},
    install_requires=install_requires,
    extras_require={
        "test": test_requires,
        "dev": test_requires + ["black>=24.0.0", "ruff>=0.5.0", "mypy>=1.10.0"],
    },
    entry_points={
        "console_scripts": ["ellu-assistant=main:main"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Intended Audience :: Education",
        "Framework :: FastAPI",
    ],
)
