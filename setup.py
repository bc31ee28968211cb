from setuptools import setup, find_packages

setup(
    name="deepsearch",
    version="0.1.0",
    packages=find_packages(include=["deepsearch", "deepsearch.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "httpx>=0.27",
        "redis>=5.0",
        "openai>=1.30,<2",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite>=0.19",
        "beautifulsoup4>=4.12",
        "lxml>=5.0",
    ],
    entry_points={
        "console_scripts": ["deepsearch-server=deepsearch.app.main:run"],
    },
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
