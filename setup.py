from setuptools import setup, find_packages

setup(
    name="solvegate",
    version="0.1.0",
    packages=find_packages(include=["solvegate", "solvegate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.6",
        "pydantic-settings>=2.7",
        "sqlalchemy[asyncio]>=2.0",
        "asyncpg>=0.29",
        "aiosqlite>=0.20",
        "redis>=5.0.1",
        "httpx>=0.27",
        "PyJWT>=2.8",
        "typing_extensions>=4.8",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
